"""
URL configuration for the ledger service.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/token/            - Obtain a JWT pair (simplejwt)
    /api/v1/auth/token/refresh/    - Refresh an access token
    /api/v1/ledger/                - Ledger endpoints
        balances/                  - Open a balance (POST)
        balances/summary/          - Summarize balances (POST)
        balances/overdue/          - Overdue balances (GET)
        balances/{type}/{id}/      - Balance statement (GET)
        balances/{type}/{id}/adjust-total/     - Adjust total (POST)
        balances/{type}/{id}/rederive/         - Compare with history (GET)
        balances/{type}/{id}/checks/received/  - Record received check (POST)
        balances/{type}/{id}/checks/expected/  - Record expected check (POST)
        balances/{type}/{id}/cash/             - Record cash payment (POST)
        balances/{type}/{id}/refunds/          - Process refund (POST)
        payments/{id}/mark-received/           - Expected check arrived (POST)
        refunds/{id}/complete/                 - Confirm manual refund (POST)
        webhooks/stripe/           - Stripe webhook endpoint (POST)

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    # Authentication (simplejwt)
    path("auth/token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    # Ledger
    path("ledger/", include("ledger.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Registration Ledger Admin"
admin.site.site_title = "Ledger Admin"
admin.site.index_title = "Balances, payments and refunds"
