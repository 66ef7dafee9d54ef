"""
Views for the ledger API.

Every endpoint is a thin APIView: validate the body with a strict
serializer, build the ledger command, call the reconciler or the
reporting service, serialize the result. Ledger errors are answered with
their to_dict() body and their own HTTP status.

Endpoints:
    Balances:
        POST /api/v1/ledger/balances/ - Open a balance
        GET  /api/v1/ledger/balances/{type}/{id}/ - Balance statement
        POST /api/v1/ledger/balances/{type}/{id}/adjust-total/ - Change the total
        GET  /api/v1/ledger/balances/{type}/{id}/rederive/ - Compare with history
        POST /api/v1/ledger/balances/summary/ - Summarize a set of registrations
        GET  /api/v1/ledger/balances/overdue/ - Balances past their due date

    Payments:
        POST /api/v1/ledger/balances/{type}/{id}/checks/received/ - Check arrived
        POST /api/v1/ledger/balances/{type}/{id}/checks/expected/ - Check promised
        POST /api/v1/ledger/payments/{payment_id}/mark-received/ - Expected check arrived
        POST /api/v1/ledger/balances/{type}/{id}/cash/ - Cash taken

    Refunds:
        POST /api/v1/ledger/balances/{type}/{id}/refunds/ - Refund money
        POST /api/v1/ledger/refunds/{refund_id}/complete/ - Confirm a manual refund

Permissions:
    Reads require authentication; anything that moves money requires an
    admin user.
"""

from __future__ import annotations

import logging

from django.utils import timezone
from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    extend_schema,
)
from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import BaseApplicationError

from ledger.retry import retry_on_conflict
from ledger.serializers import (
    AdjustTotalSerializer,
    BalanceSerializer,
    BalanceStatementSerializer,
    BalanceSummarySerializer,
    CompleteManualRefundSerializer,
    MarkCheckReceivedSerializer,
    OpenBalanceSerializer,
    OverdueQuerySerializer,
    PaymentSerializer,
    ProcessRefundSerializer,
    RecordCashPaymentSerializer,
    RecordCheckExpectedSerializer,
    RecordCheckReceivedSerializer,
    RederivationResultSerializer,
    RefundSerializer,
    SummarizeBalancesSerializer,
    deposit_from,
)
from ledger.services import LedgerReconciler, LedgerReportingService
from ledger.types import (
    AdjustTotalCommand,
    CompleteManualRefundCommand,
    MarkCheckReceivedCommand,
    OpenBalanceCommand,
    ProcessRefundCommand,
    RecordCashPaymentCommand,
    RecordCheckExpectedCommand,
    RecordCheckReceivedCommand,
    RegistrationKey,
)

logger = logging.getLogger(__name__)


LEDGER_ERROR_RESPONSES = {
    400: OpenApiResponse(description="Invalid request"),
    404: OpenApiResponse(description="Balance, payment or refund not found"),
    409: OpenApiResponse(description="Concurrent modification or invalid state"),
}

REGISTRATION_PARAMETERS = [
    OpenApiParameter(
        name="registration_type",
        type=str,
        location=OpenApiParameter.PATH,
        enum=["group", "individual", "vendor", "staff"],
    ),
    OpenApiParameter(name="registration_id", type=str, location=OpenApiParameter.PATH),
]


class LedgerAPIView(APIView):
    """
    Base view for ledger endpoints.

    Maps ledger errors to their HTTP status and builds services per
    request so nothing leaks between requests.
    """

    permission_classes = [IsAuthenticated]

    def handle_exception(self, exc):
        if isinstance(exc, BaseApplicationError):
            log = logger.error if exc.http_status >= 500 else logger.warning
            log(
                f"Ledger request rejected: {exc.error_code}",
                extra={
                    "path": self.request.path,
                    "error_code": exc.error_code,
                    "http_status": exc.http_status,
                },
            )
            return Response(exc.to_dict(), status=exc.http_status)
        return super().handle_exception(exc)

    def get_reconciler(self) -> LedgerReconciler:
        return LedgerReconciler()

    def get_reporting(self) -> LedgerReportingService:
        return LedgerReportingService()

    def acting_user_id(self) -> str:
        return str(self.request.user.pk)

    def registration_key(self) -> RegistrationKey:
        return RegistrationKey(
            self.kwargs["registration_id"], self.kwargs["registration_type"]
        )


class LedgerMutationView(LedgerAPIView):
    permission_classes = [IsAdminUser]


# =============================================================================
# Balances
# =============================================================================


class OpenBalanceView(LedgerMutationView):
    @extend_schema(
        operation_id="open_balance",
        summary="Open a balance",
        description=(
            "Create the balance for a finalized registration. Re-opening with "
            "the same total returns the existing balance; a different total "
            "is a 409 and must go through adjust-total."
        ),
        request=OpenBalanceSerializer,
        responses={201: BalanceSerializer, **LEDGER_ERROR_RESPONSES},
        tags=["Ledger - Balances"],
    )
    def post(self, request):
        serializer = OpenBalanceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        command = OpenBalanceCommand(
            key=RegistrationKey(data["registration_id"], data["registration_type"]),
            total_amount_due=data["total_amount_due"],
            due_date=data.get("due_date"),
        )
        balance = self.get_reconciler().open_balance(command)
        return Response(BalanceSerializer(balance).data, status=status.HTTP_201_CREATED)


class BalanceStatementView(LedgerAPIView):
    @extend_schema(
        operation_id="get_balance_statement",
        summary="Balance statement",
        description="The balance with its payments, refunds and audit entries.",
        parameters=REGISTRATION_PARAMETERS,
        responses={200: BalanceStatementSerializer, **LEDGER_ERROR_RESPONSES},
        tags=["Ledger - Balances"],
    )
    def get(self, request, registration_type, registration_id):
        statement = self.get_reporting().get_balance_statement(self.registration_key())
        return Response(BalanceStatementSerializer(statement).data)


class AdjustTotalView(LedgerMutationView):
    @extend_schema(
        operation_id="adjust_balance_total",
        summary="Adjust total amount due",
        description=(
            "Change what the registration owes. Writes a manual_total_change "
            "audit entry. With expected_version, a concurrent edit is a 409; "
            "without it the edit is retried against the current balance."
        ),
        parameters=REGISTRATION_PARAMETERS,
        request=AdjustTotalSerializer,
        responses={200: BalanceSerializer, **LEDGER_ERROR_RESPONSES},
        tags=["Ledger - Balances"],
    )
    def post(self, request, registration_type, registration_id):
        serializer = AdjustTotalSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        command = AdjustTotalCommand(
            key=self.registration_key(),
            new_total=data["new_total"],
            acting_user_id=self.acting_user_id(),
            notes=data.get("notes"),
            expected_version=data.get("expected_version"),
            notify_email=data.get("notify_email"),
        )
        reconciler = self.get_reconciler()
        if command.expected_version is not None:
            balance = reconciler.adjust_total(command)
        else:
            balance = retry_on_conflict(lambda: reconciler.adjust_total(command))
        return Response(BalanceSerializer(balance).data)


class RederiveBalanceView(LedgerAPIView):
    @extend_schema(
        operation_id="rederive_balance",
        summary="Re-derive balance from history",
        description=(
            "Recompute the balance from payments, refunds and total edits and "
            "compare it with the stored balance. Never modifies anything."
        ),
        parameters=REGISTRATION_PARAMETERS,
        responses={200: RederivationResultSerializer, **LEDGER_ERROR_RESPONSES},
        tags=["Ledger - Reporting"],
    )
    def get(self, request, registration_type, registration_id):
        result = self.get_reporting().rederive_balance(self.registration_key())
        return Response(RederivationResultSerializer(result).data)


class BalanceSummaryView(LedgerAPIView):
    @extend_schema(
        operation_id="summarize_balances",
        summary="Summarize balances",
        description=(
            "Per-registration balances, totals, counts by status and the "
            "requested registrations that have no balance."
        ),
        request=SummarizeBalancesSerializer,
        responses={200: BalanceSummarySerializer, 400: OpenApiResponse(description="Invalid request")},
        tags=["Ledger - Reporting"],
    )
    def post(self, request):
        serializer = SummarizeBalancesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        keys = [
            RegistrationKey(item["registration_id"], item["registration_type"])
            for item in serializer.validated_data["registrations"]
        ]
        summary = self.get_reporting().summarize_balances(keys)
        return Response(BalanceSummarySerializer(summary).data)


class OverdueBalancesView(LedgerAPIView):
    @extend_schema(
        operation_id="list_overdue_balances",
        summary="Overdue balances",
        description="Balances whose due date is before as_of (default today) that still owe money.",
        parameters=[
            OpenApiParameter(
                name="as_of",
                type=str,
                location=OpenApiParameter.QUERY,
                required=False,
                description="ISO date; defaults to today",
            ),
        ],
        responses={200: BalanceSerializer(many=True)},
        tags=["Ledger - Reporting"],
    )
    def get(self, request):
        serializer = OverdueQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        as_of = serializer.validated_data.get("as_of") or timezone.localdate()

        balances = self.get_reporting().find_overdue(as_of)
        return Response(BalanceSerializer(balances, many=True).data)


# =============================================================================
# Payments
# =============================================================================


class RecordCheckReceivedView(LedgerMutationView):
    @extend_schema(
        operation_id="record_check_received",
        summary="Record a received check",
        description=(
            "Apply a physical check to the balance. Recording the same check "
            "(number, date, amount) twice returns the original payment."
        ),
        parameters=REGISTRATION_PARAMETERS,
        request=RecordCheckReceivedSerializer,
        responses={201: PaymentSerializer, **LEDGER_ERROR_RESPONSES},
        tags=["Ledger - Payments"],
    )
    def post(self, request, registration_type, registration_id):
        serializer = RecordCheckReceivedSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        command = RecordCheckReceivedCommand(
            key=self.registration_key(),
            check_number=data["check_number"],
            amount_received=data["amount_received"],
            date_received=data["date_received"],
            acting_user_id=self.acting_user_id(),
            notes=data.get("notes"),
            payer_name=data.get("payer_name"),
            deposit=deposit_from(data.get("deposit")),
            notify_email=data.get("notify_email"),
        )
        reconciler = self.get_reconciler()
        payment = retry_on_conflict(lambda: reconciler.record_check_received(command))
        return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)


class RecordCheckExpectedView(LedgerMutationView):
    @extend_schema(
        operation_id="record_check_expected",
        summary="Record an expected check",
        description="Note a promised check. The balance is unchanged until it arrives.",
        parameters=REGISTRATION_PARAMETERS,
        request=RecordCheckExpectedSerializer,
        responses={201: PaymentSerializer, **LEDGER_ERROR_RESPONSES},
        tags=["Ledger - Payments"],
    )
    def post(self, request, registration_type, registration_id):
        serializer = RecordCheckExpectedSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        command = RecordCheckExpectedCommand(
            key=self.registration_key(),
            check_number=data["check_number"],
            amount=data["amount"],
            acting_user_id=self.acting_user_id(),
            payer_name=data.get("payer_name"),
            notes=data.get("notes"),
        )
        payment = self.get_reconciler().record_check_expected(command)
        return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)


class MarkCheckReceivedView(LedgerMutationView):
    @extend_schema(
        operation_id="mark_check_received",
        summary="Mark an expected check as received",
        description="Settle a pending check and apply it to the balance.",
        request=MarkCheckReceivedSerializer,
        responses={200: PaymentSerializer, **LEDGER_ERROR_RESPONSES},
        tags=["Ledger - Payments"],
    )
    def post(self, request, payment_id):
        serializer = MarkCheckReceivedSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        command = MarkCheckReceivedCommand(
            payment_id=payment_id,
            date_received=data["date_received"],
            acting_user_id=self.acting_user_id(),
            notes=data.get("notes"),
            deposit=deposit_from(data.get("deposit")),
            notify_email=data.get("notify_email"),
        )
        reconciler = self.get_reconciler()
        payment = retry_on_conflict(lambda: reconciler.mark_check_received(command))
        return Response(PaymentSerializer(payment).data)


class RecordCashPaymentView(LedgerMutationView):
    @extend_schema(
        operation_id="record_cash_payment",
        summary="Record a cash payment",
        parameters=REGISTRATION_PARAMETERS,
        request=RecordCashPaymentSerializer,
        responses={201: PaymentSerializer, **LEDGER_ERROR_RESPONSES},
        tags=["Ledger - Payments"],
    )
    def post(self, request, registration_type, registration_id):
        serializer = RecordCashPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        command = RecordCashPaymentCommand(
            key=self.registration_key(),
            amount=data["amount"],
            received_at=data["received_at"],
            acting_user_id=self.acting_user_id(),
            notes=data.get("notes"),
            notify_email=data.get("notify_email"),
        )
        reconciler = self.get_reconciler()
        payment = retry_on_conflict(lambda: reconciler.record_cash_payment(command))
        return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)


# =============================================================================
# Refunds
# =============================================================================


class ProcessRefundView(LedgerMutationView):
    @extend_schema(
        operation_id="process_refund",
        summary="Refund a registration",
        description=(
            "Refund up to the amount paid. Gateway refunds go back to the most "
            "recent settled card payment; a pending gateway refund is "
            "completed later by the gateway webhook."
        ),
        parameters=REGISTRATION_PARAMETERS,
        request=ProcessRefundSerializer,
        responses={
            201: RefundSerializer,
            **LEDGER_ERROR_RESPONSES,
            422: OpenApiResponse(description="Refund exceeds amount paid"),
            502: OpenApiResponse(description="Payment gateway rejected or unreachable"),
        },
        tags=["Ledger - Refunds"],
    )
    def post(self, request, registration_type, registration_id):
        serializer = ProcessRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        command = ProcessRefundCommand(
            key=self.registration_key(),
            refund_amount=data["refund_amount"],
            method=data["method"],
            reason=data["reason"],
            acting_user_id=self.acting_user_id(),
            completed=data.get("completed", True),
            notify_email=data.get("notify_email"),
            idempotency_key=data.get("idempotency_key"),
        )
        # Not retried here; clients retry with the same idempotency_key
        refund = self.get_reconciler().process_refund(command)
        return Response(RefundSerializer(refund).data, status=status.HTTP_201_CREATED)


class CompleteManualRefundView(LedgerMutationView):
    @extend_schema(
        operation_id="complete_manual_refund",
        summary="Confirm a manual refund went out",
        description="Move a pending check, cash or manual refund to completed.",
        request=CompleteManualRefundSerializer,
        responses={200: RefundSerializer, **LEDGER_ERROR_RESPONSES},
        tags=["Ledger - Refunds"],
    )
    def post(self, request, refund_id):
        serializer = CompleteManualRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        command = CompleteManualRefundCommand(
            refund_id=refund_id,
            acting_user_id=self.acting_user_id(),
            notes=serializer.validated_data.get("notes"),
        )
        refund = self.get_reconciler().complete_manual_refund(command)
        return Response(RefundSerializer(refund).data)


__all__ = [
    "AdjustTotalView",
    "BalanceStatementView",
    "BalanceSummaryView",
    "CompleteManualRefundView",
    "LedgerAPIView",
    "MarkCheckReceivedView",
    "OpenBalanceView",
    "OverdueBalancesView",
    "ProcessRefundView",
    "RecordCashPaymentView",
    "RecordCheckExpectedView",
    "RecordCheckReceivedView",
    "RederiveBalanceView",
]
