"""
Module 'payments' (feature-first): point d'entrée public.
Réunit metadata Stripe et adaptateur Stripe (sessions Checkout, vérification des webhooks).
"""

from .metadata import extract_session, extract_order_id
from .stripe_client import (
    require_stripe,
    StripeGateway,
    PaymentSession,
    PaymentEvent,
    CHECKOUT_COMPLETED,
    ASYNC_PAYMENT_SUCCEEDED,
    SESSION_EXPIRED,
    ASYNC_PAYMENT_FAILED,
)

__all__ = [
    # metadata
    "extract_session",
    "extract_order_id",
    # stripe
    "require_stripe",
    "StripeGateway",
    "PaymentSession",
    "PaymentEvent",
    "CHECKOUT_COMPLETED",
    "ASYNC_PAYMENT_SUCCEEDED",
    "SESSION_EXPIRED",
    "ASYNC_PAYMENT_FAILED",
]
