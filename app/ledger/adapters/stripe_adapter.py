"""
Stripe gateway adapter for the ledger.

The ledger only ever asks the gateway for one thing: refund part of a
settled card payment. Everything that talks to Stripe goes through
StripeGateway so errors, timeouts, idempotency and logging are handled
in one place. Stripe errors never leak past this module; they are
translated to GatewayDeclinedError, GatewayNetworkError or
GatewayAlreadyRefundedError.

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- LEDGER_CURRENCY: Currency of every ledger amount (default: usd)

Usage:
    from ledger.adapters import IdempotencyKeyGenerator, StripeGateway

    result = StripeGateway.charge_refund(
        gateway_payment_reference="pi_xxx",
        amount=Decimal("100.00"),
        idempotency_key=IdempotencyKeyGenerator.generate("refund", refund.id),
    )
"""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import stripe
from django.conf import settings

from ledger.exceptions import (
    GatewayAlreadyRefundedError,
    GatewayDeclinedError,
    GatewayNetworkError,
    LedgerValidationError,
)

# Stripe error codes meaning "nothing left to refund on this charge"
ALREADY_REFUNDED_CODES = frozenset({"charge_already_refunded"})

# Refund statuses that leave the local refund pending until a webhook lands
PENDING_REFUND_STATUSES = frozenset({"pending", "requires_action"})

FAILED_REFUND_STATUSES = frozenset({"failed", "canceled"})


# =============================================================================
# Money Conversion
# =============================================================================


def amount_to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_amount(cents: int | None) -> Decimal:
    if cents is None:
        return Decimal("0.00")
    return (Decimal(int(cents)) / 100).quantize(Decimal("0.01"))


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class RefundResult:
    """
    Outcome of a refund request the gateway accepted.

    Attributes:
        id: Gateway refund ID (re_xxx)
        amount: Refunded amount in currency units
        currency: Currency code
        status: Gateway refund status (succeeded, pending, ...)
        payment_reference: PaymentIntent or charge the refund belongs to
        raw_response: Full Stripe response dict
    """

    id: str
    amount: Decimal
    currency: str
    status: str
    payment_reference: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def is_pending(self) -> bool:
        return self.status in PENDING_REFUND_STATUSES


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Build Stripe idempotency keys.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The same refund row always produces the same key, so a retried call
    after a timeout cannot refund twice.
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]
        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Stripe Gateway
# =============================================================================


class StripeGateway:
    """
    PaymentGateway implementation backed by the Stripe API.

    All methods are classmethods; pass either the class or an instance
    wherever a PaymentGateway is expected.
    """

    @staticmethod
    def _configure_stripe() -> None:
        stripe.api_key = settings.STRIPE_SECRET_KEY
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # =========================================================================
    # Refunds
    # =========================================================================

    @classmethod
    def charge_refund(
        cls,
        gateway_payment_reference: str,
        amount: Decimal,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        """
        Refund part or all of a settled card payment.

        Args:
            gateway_payment_reference: PaymentIntent (pi_) or charge (ch_) ID
            amount: Amount to refund, positive, in currency units
            idempotency_key: Stable key for this refund row
            metadata: Extra key-value pairs stored on the Stripe refund

        Returns:
            RefundResult; check is_pending for asynchronous refunds

        Raises:
            GatewayDeclinedError: Stripe rejected the refund
            GatewayNetworkError: Outcome unknown (timeout, 5xx, rate limit)
            GatewayAlreadyRefundedError: The charge has no refundable amount
        """
        if not gateway_payment_reference:
            raise LedgerValidationError(
                "A gateway payment reference is required for a gateway refund",
                error_code="MISSING_GATEWAY_REFERENCE",
            )

        cls._configure_stripe()
        logger = cls.get_logger()
        amount_cents = amount_to_cents(amount)

        log_context = {
            "operation": "charge_refund",
            "gateway_payment_reference": gateway_payment_reference,
            "amount_cents": amount_cents,
            "idempotency_key": idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        params: dict[str, Any] = {
            "amount": amount_cents,
            "metadata": metadata or {},
        }
        if gateway_payment_reference.startswith("ch_"):
            params["charge"] = gateway_payment_reference
        else:
            params["payment_intent"] = gateway_payment_reference

        try:
            refund = stripe.Refund.create(idempotency_key=idempotency_key, **params)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Stripe operation completed",
            extra={
                **log_context,
                "refund_id": refund.id,
                "status": refund.status,
                "duration_ms": duration_ms,
            },
        )

        if refund.status in FAILED_REFUND_STATUSES:
            raise GatewayDeclinedError(
                f"Refund {refund.id} was {refund.status} by the gateway",
                gateway_code=getattr(refund, "failure_reason", None) or refund.status,
                details={"refund_id": refund.id},
            )

        return RefundResult(
            id=refund.id,
            amount=cents_to_amount(refund.amount),
            currency=refund.currency,
            status=refund.status,
            payment_reference=refund.payment_intent or refund.charge,
            raw_response=refund.to_dict(),
        )

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    @classmethod
    def verify_webhook_signature(cls, payload: bytes, signature: str) -> dict[str, Any]:
        """
        Verify and parse a Stripe webhook event.

        Raises:
            LedgerValidationError: Invalid signature or payload
        """
        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                settings.STRIPE_WEBHOOK_SECRET,
            )
        except stripe.SignatureVerificationError as e:
            raise LedgerValidationError(
                "Invalid webhook signature",
                error_code="INVALID_WEBHOOK_SIGNATURE",
                details={"error": str(e)},
            )
        except ValueError as e:
            raise LedgerValidationError(
                "Invalid webhook payload",
                error_code="INVALID_WEBHOOK_PAYLOAD",
                details={"error": str(e)},
            )
        return event.to_dict()

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to gateway exceptions.

        Raises:
            GatewayAlreadyRefundedError: charge_already_refunded
            GatewayDeclinedError: Card or request errors, bad credentials
            GatewayNetworkError: Connection, rate limit, 5xx and unknown errors
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}
        code = getattr(error, "code", None)

        if isinstance(error, stripe.StripeError) and code in ALREADY_REFUNDED_CODES:
            logger.warning(
                "Charge already refunded at Stripe",
                extra={**log_context, "stripe_code": code},
            )
            raise GatewayAlreadyRefundedError(
                str(getattr(error, "user_message", None) or error),
                gateway_code=code,
            )

        if isinstance(error, stripe.CardError):
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "stripe_code": code},
            )
            raise GatewayDeclinedError(
                str(error.user_message or error),
                gateway_code=code,
            )

        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": code},
            )
            raise GatewayDeclinedError(str(error), gateway_code=code)

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise GatewayNetworkError(
                "Stripe rate limit exceeded. Please retry.",
                gateway_code="rate_limit",
            )

        if isinstance(error, stripe.APIConnectionError):
            logger.error(
                "Connection error to Stripe",
                extra=log_context,
                exc_info=True,
            )
            raise GatewayNetworkError(
                "Could not connect to Stripe. Please retry.",
                gateway_code="api_connection_error",
            )

        if isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise GatewayDeclinedError(
                "Stripe authentication failed",
                gateway_code="authentication_error",
            )

        if isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise GatewayNetworkError(
                "Stripe service error. Please retry.",
                gateway_code="api_error",
            )

        logger.error(
            f"Unexpected error from Stripe: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        raise GatewayNetworkError(
            f"Unexpected Stripe error: {error}",
            gateway_code="unknown_error",
        )
