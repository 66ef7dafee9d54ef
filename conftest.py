"""
Root pytest configuration.

Puts the Django settings module in place before collection. Project
fixtures and marker rules live in app/conftest.py; ledger fixtures in
app/ledger/tests/conftest.py.
"""

import os

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
