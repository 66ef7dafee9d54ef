"""
Pytest fixtures for ledger tests.

The reconciler fixture runs against the real Django stores with a mock
gateway and no Redis lock; tests that exercise the lock itself use
mock_redis instead. Notification tasks are never sent to a broker.

Usage:
    def test_check_payment(reconciler, key, balance):
        reconciler.record_check_received(...)
        assert reload(balance).amount_paid == Decimal("300.00")
"""

import uuid
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from ledger.adapters import RefundResult
from ledger.services import LedgerReconciler, LedgerReportingService
from ledger.state_machines import RegistrationType
from ledger.tests.factories import BalanceFactory
from ledger.tests.helpers import no_lock, reload
from ledger.types import RecordCardPaymentCommand, RegistrationKey


# =============================================================================
# Infrastructure Mocks
# =============================================================================


@pytest.fixture(autouse=True)
def mock_notification_task():
    """Keep notification emails off the Celery broker."""
    with patch("ledger.tasks.send_ledger_notification.delay") as mock_delay:
        yield mock_delay


@pytest.fixture
def mock_redis():
    """Mock Redis for distributed locking."""
    mock_redis = MagicMock()
    mock_redis.set.return_value = True
    mock_redis.get.return_value = None
    mock_redis.delete.return_value = 1
    mock_redis.eval.return_value = 1

    with patch("ledger.locks.get_redis_connection", return_value=mock_redis):
        yield mock_redis


@pytest.fixture
def gateway():
    """Mock payment gateway whose refunds succeed immediately."""
    mock_gateway = MagicMock()
    mock_gateway.charge_refund.return_value = RefundResult(
        id="re_test_123",
        amount=Decimal("100.00"),
        currency="usd",
        status="succeeded",
        payment_reference="pi_test_123",
    )
    return mock_gateway


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def reconciler(db, gateway):
    return LedgerReconciler(gateway=gateway, lock_factory=no_lock)


@pytest.fixture
def reporting(db):
    return LedgerReportingService()


# =============================================================================
# Balances
# =============================================================================


@pytest.fixture
def key():
    return RegistrationKey(uuid.uuid4(), RegistrationType.GROUP)


@pytest.fixture
def balance(db, key):
    """Unpaid $500.00 balance for key."""
    return BalanceFactory(
        registration_id=key.registration_id,
        registration_type=key.registration_type,
        total_amount_due=Decimal("500.00"),
    )


@pytest.fixture
def card_paid_balance(reconciler, key, balance):
    """$500.00 balance with a settled $300.00 card payment (pi_test_123)."""
    reconciler.record_card_payment_succeeded(
        RecordCardPaymentCommand(
            key=key,
            amount=Decimal("300.00"),
            gateway_reference="pi_test_123",
        )
    )
    return reload(balance)
