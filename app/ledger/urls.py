"""
URL configuration for the ledger app.

Routes:
    - /balances/ - Open, inspect, adjust and summarize balances
    - /balances/{type}/{id}/checks/, /cash/, /refunds/ - Money in and out
    - /payments/{id}/mark-received/ - Settle an expected check
    - /refunds/{id}/complete/ - Confirm a manual refund
    - POST /webhooks/stripe/ - Stripe webhook endpoint

All routes are prefixed with /api/v1/ledger/ when included in the main URLconf.
"""

from django.urls import path

from ledger import views
from ledger.webhooks.views import stripe_webhook

app_name = "ledger"

registration = "balances/<str:registration_type>/<uuid:registration_id>/"

urlpatterns = [
    # Balances
    path("balances/", views.OpenBalanceView.as_view(), name="balance_open"),
    path("balances/summary/", views.BalanceSummaryView.as_view(), name="balance_summary"),
    path("balances/overdue/", views.OverdueBalancesView.as_view(), name="balance_overdue"),
    path(registration, views.BalanceStatementView.as_view(), name="balance_statement"),
    path(
        registration + "adjust-total/",
        views.AdjustTotalView.as_view(),
        name="balance_adjust_total",
    ),
    path(
        registration + "rederive/",
        views.RederiveBalanceView.as_view(),
        name="balance_rederive",
    ),
    # Payments
    path(
        registration + "checks/received/",
        views.RecordCheckReceivedView.as_view(),
        name="check_received",
    ),
    path(
        registration + "checks/expected/",
        views.RecordCheckExpectedView.as_view(),
        name="check_expected",
    ),
    path(
        "payments/<uuid:payment_id>/mark-received/",
        views.MarkCheckReceivedView.as_view(),
        name="check_mark_received",
    ),
    path(registration + "cash/", views.RecordCashPaymentView.as_view(), name="cash_payment"),
    # Refunds
    path(registration + "refunds/", views.ProcessRefundView.as_view(), name="refund_create"),
    path(
        "refunds/<uuid:refund_id>/complete/",
        views.CompleteManualRefundView.as_view(),
        name="refund_complete",
    ),
    # Webhook endpoints
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
]
