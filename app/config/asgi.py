"""
ASGI config for the ledger service.

Uvicorn serves the Django application through this entry point. The ledger
has no WebSocket traffic, so only HTTP is routed.

For more information on this file, see:
https://docs.djangoproject.com/en/5.2/howto/deployment/asgi/
"""

import os

from django.core.asgi import get_asgi_application

# Set the default Django settings module for the ASGI application
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_asgi_application()
