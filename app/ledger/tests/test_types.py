"""
Tests for ledger command validation.

Commands reject malformed input in __post_init__, before any balance
is read.
"""

import datetime
import uuid
from decimal import Decimal

import pytest
from django.utils import timezone
from freezegun import freeze_time

from ledger.exceptions import LedgerValidationError
from ledger.state_machines import RefundMethod, RegistrationType
from ledger.types import (
    AdjustTotalCommand,
    AuditRecord,
    DepositDetails,
    OpenBalanceCommand,
    ProcessRefundCommand,
    RecordCardPaymentCommand,
    RecordCashPaymentCommand,
    RecordCheckReceivedCommand,
    RegistrationKey,
)


@pytest.fixture
def key():
    return RegistrationKey(uuid.uuid4(), RegistrationType.INDIVIDUAL)


class TestRegistrationKey:
    """Tests for RegistrationKey."""

    def test_coerces_string_id(self):
        registration_id = uuid.uuid4()

        key = RegistrationKey(str(registration_id), "vendor")

        assert key.registration_id == registration_id

    def test_rejects_unknown_type(self):
        with pytest.raises(LedgerValidationError) as exc_info:
            RegistrationKey(uuid.uuid4(), "sponsor")

        assert exc_info.value.error_code == "INVALID_REGISTRATION_TYPE"
        assert "group" in exc_info.value.details["allowed"]

    def test_rejects_malformed_id(self):
        with pytest.raises(LedgerValidationError) as exc_info:
            RegistrationKey("not-a-uuid", "group")

        assert exc_info.value.error_code == "INVALID_IDENTIFIER"

    def test_equal_keys_hash_equal(self):
        registration_id = uuid.uuid4()

        first = RegistrationKey(registration_id, "group")
        second = RegistrationKey(str(registration_id), "group")

        assert first == second
        assert len({first, second}) == 1

    def test_same_id_different_type_is_different_key(self):
        registration_id = uuid.uuid4()

        assert RegistrationKey(registration_id, "group") != RegistrationKey(
            registration_id, "staff"
        )

    def test_as_filter_and_str(self, key):
        assert key.as_filter() == {
            "registration_id": key.registration_id,
            "registration_type": "individual",
        }
        assert str(key) == f"individual:{key.registration_id}"


class TestOpenBalanceCommand:
    def test_zero_total_allowed(self, key):
        command = OpenBalanceCommand(key=key, total_amount_due="0")

        assert command.total_amount_due == Decimal("0.00")

    def test_negative_total_rejected(self, key):
        with pytest.raises(LedgerValidationError):
            OpenBalanceCommand(key=key, total_amount_due=Decimal("-5.00"))


class TestAdjustTotalCommand:
    def test_integer_actor_is_stringified(self, key):
        command = AdjustTotalCommand(key=key, new_total=Decimal("400.00"), acting_user_id=42)

        assert command.acting_user_id == "42"

    def test_actor_required(self, key):
        with pytest.raises(LedgerValidationError) as exc_info:
            AdjustTotalCommand(key=key, new_total=Decimal("400.00"), acting_user_id="  ")

        assert exc_info.value.error_code == "MISSING_FIELD"

    @pytest.mark.parametrize("version", [0, -1, True, "2"])
    def test_invalid_expected_version(self, key, version):
        with pytest.raises(LedgerValidationError) as exc_info:
            AdjustTotalCommand(
                key=key,
                new_total=Decimal("400.00"),
                acting_user_id="7",
                expected_version=version,
            )

        assert exc_info.value.error_code == "INVALID_VERSION"

    def test_blank_notes_become_none(self, key):
        command = AdjustTotalCommand(
            key=key, new_total=Decimal("400.00"), acting_user_id="7", notes="   "
        )

        assert command.notes is None


class TestRecordCheckReceivedCommand:
    def _command(self, key, **overrides):
        fields = {
            "key": key,
            "check_number": " 1042 ",
            "amount_received": Decimal("300.00"),
            "date_received": datetime.date(2024, 3, 1),
        }
        fields.update(overrides)
        return RecordCheckReceivedCommand(**fields)

    def test_check_number_is_stripped(self, key):
        assert self._command(key).check_number == "1042"

    def test_blank_check_number_rejected(self, key):
        with pytest.raises(LedgerValidationError) as exc_info:
            self._command(key, check_number="")

        assert exc_info.value.error_code == "MISSING_FIELD"
        assert exc_info.value.details["field"] == "check_number"

    def test_long_check_number_rejected(self, key):
        with pytest.raises(LedgerValidationError) as exc_info:
            self._command(key, check_number="9" * 51)

        assert exc_info.value.error_code == "FIELD_TOO_LONG"

    @freeze_time("2024-03-15")
    def test_future_date_rejected(self, key):
        with pytest.raises(LedgerValidationError) as exc_info:
            self._command(key, date_received=datetime.date(2024, 3, 16))

        assert exc_info.value.error_code == "DATE_IN_FUTURE"

    @freeze_time("2024-03-15")
    def test_today_accepted(self, key):
        command = self._command(key, date_received=datetime.date(2024, 3, 15))

        assert command.date_received == datetime.date(2024, 3, 15)

    def test_datetime_rejected_as_date(self, key):
        with pytest.raises(LedgerValidationError) as exc_info:
            self._command(key, date_received=datetime.datetime(2024, 3, 1, 9, 30))

        assert exc_info.value.error_code == "INVALID_DATE"

    def test_zero_amount_rejected(self, key):
        with pytest.raises(LedgerValidationError):
            self._command(key, amount_received=Decimal("0.00"))


class TestRecordCashPaymentCommand:
    @freeze_time("2024-03-15 12:00:00")
    def test_naive_timestamp_made_aware(self, key):
        command = RecordCashPaymentCommand(
            key=key,
            amount=Decimal("20.00"),
            received_at=datetime.datetime(2024, 3, 15, 9, 0),
        )

        assert timezone.is_aware(command.received_at)

    @freeze_time("2024-03-15 12:00:00")
    def test_future_timestamp_rejected(self, key):
        with pytest.raises(LedgerValidationError) as exc_info:
            RecordCashPaymentCommand(
                key=key,
                amount=Decimal("20.00"),
                received_at=timezone.now() + datetime.timedelta(hours=1),
            )

        assert exc_info.value.error_code == "DATE_IN_FUTURE"


class TestRecordCardPaymentCommand:
    def test_gateway_reference_required(self, key):
        with pytest.raises(LedgerValidationError):
            RecordCardPaymentCommand(key=key, amount=Decimal("10.00"), gateway_reference=None)


class TestProcessRefundCommand:
    def test_unknown_method_rejected(self, key):
        with pytest.raises(LedgerValidationError) as exc_info:
            ProcessRefundCommand(
                key=key,
                refund_amount=Decimal("10.00"),
                method="wire",
                reason="Duplicate",
                acting_user_id="1",
            )

        assert exc_info.value.error_code == "INVALID_REFUND_METHOD"

    def test_reason_required(self, key):
        with pytest.raises(LedgerValidationError):
            ProcessRefundCommand(
                key=key,
                refund_amount=Decimal("10.00"),
                method=RefundMethod.CHECK,
                reason="",
                acting_user_id="1",
            )

    def test_is_gateway(self, key):
        command = ProcessRefundCommand(
            key=key,
            refund_amount=Decimal("10.00"),
            method=RefundMethod.GATEWAY,
            reason="Cancelled",
            acting_user_id="1",
        )

        assert command.is_gateway is True
        assert command.completed is True


class TestDepositDetails:
    def test_blank_fields_become_none(self):
        deposit = DepositDetails(bank_account="", slip_number="  ")

        assert deposit.bank_account is None
        assert deposit.slip_number is None

    @freeze_time("2024-03-15")
    def test_future_deposit_date_rejected(self):
        with pytest.raises(LedgerValidationError):
            DepositDetails(deposit_date=datetime.date(2024, 4, 1))


class TestAuditRecord:
    def test_unknown_edit_type_rejected(self, key):
        with pytest.raises(LedgerValidationError) as exc_info:
            AuditRecord(
                key=key,
                edit_type="payment_deleted",
                old_total=Decimal("1.00"),
                new_total=Decimal("1.00"),
                difference=Decimal("0.00"),
                acting_user_id="1",
            )

        assert exc_info.value.error_code == "INVALID_AUDIT_EDIT_TYPE"
