"""
Ledger adapters for external services.

Usage:
    from ledger.adapters import StripeGateway, IdempotencyKeyGenerator
"""

from ledger.adapters.stripe_adapter import (
    IdempotencyKeyGenerator,
    RefundResult,
    StripeGateway,
    amount_to_cents,
    cents_to_amount,
)

__all__ = [
    "IdempotencyKeyGenerator",
    "RefundResult",
    "StripeGateway",
    "amount_to_cents",
    "cents_to_amount",
]
