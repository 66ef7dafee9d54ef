"""
Factory Boy factories for ledger test data.

Usage:
    from ledger.tests.factories import BalanceFactory, PaymentFactory

    # Unpaid $500 group balance
    balance = BalanceFactory()

    # Balance with a partial payment already applied
    balance = BalanceFactory(amount_paid=Decimal("200.00"))

    # Pending check for that balance
    payment = PaymentFactory(
        registration_id=balance.registration_id,
        registration_type=balance.registration_type,
    )
"""

import uuid
from decimal import Decimal

import factory

from ledger.models import Balance, Payment, Refund, WebhookEvent
from ledger.state_machines import (
    PaymentMethod,
    RefundMethod,
    RegistrationType,
    WebhookEventStatus,
)


class BalanceFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating Balance instances.

    Default creates an unpaid $500.00 group balance. amount_remaining
    and initial_amount_due follow the other fields so the triple always
    reconciles; payment_status is derived on save.
    """

    class Meta:
        model = Balance
        skip_postgeneration_save = True

    registration_id = factory.LazyFunction(uuid.uuid4)
    registration_type = RegistrationType.GROUP
    total_amount_due = Decimal("500.00")
    amount_paid = Decimal("0.00")
    amount_remaining = factory.LazyAttribute(
        lambda o: o.total_amount_due - o.amount_paid
    )
    initial_amount_due = factory.LazyAttribute(lambda o: o.total_amount_due)


class PaymentFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating Payment instances.

    Default creates a PENDING $100.00 check. Pass payment_status at
    creation for other states; the FSM field cannot be assigned later.
    """

    class Meta:
        model = Payment
        skip_postgeneration_save = True

    registration_id = factory.LazyFunction(uuid.uuid4)
    registration_type = RegistrationType.GROUP
    amount = Decimal("100.00")
    payment_method = PaymentMethod.CHECK
    check_number = factory.Sequence(lambda n: f"{1000 + n}")
    payer_name = factory.Faker("name")


class RefundFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating Refund instances.

    Default creates a PENDING $50.00 check refund that has not been
    applied to any balance.
    """

    class Meta:
        model = Refund
        skip_postgeneration_save = True

    registration_id = factory.LazyFunction(uuid.uuid4)
    registration_type = RegistrationType.GROUP
    refund_amount = Decimal("50.00")
    refund_method = RefundMethod.CHECK
    refund_reason = factory.Faker("sentence")
    processed_by_user_id = "1"


class WebhookEventFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = WebhookEvent
        skip_postgeneration_save = True

    stripe_event_id = factory.Sequence(lambda n: f"evt_test_{n}_{uuid.uuid4().hex[:8]}")
    event_type = "payment_intent.succeeded"
    payload = factory.LazyFunction(
        lambda: {
            "id": f"evt_{uuid.uuid4().hex}",
            "type": "payment_intent.succeeded",
            "data": {
                "object": {
                    "id": f"pi_{uuid.uuid4().hex}",
                    "object": "payment_intent",
                    "amount": 10000,
                    "currency": "usd",
                    "status": "succeeded",
                }
            },
        }
    )
    status = WebhookEventStatus.PENDING
