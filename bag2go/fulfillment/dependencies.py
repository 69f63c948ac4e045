"""
Assemblage du workflow à partir de la configuration.
- build_workflow(): store (supabase | memory), passerelle Stripe, notifier SendGrid.
- workflow_for_app(app) / get_workflow(request): une instance par app (app.state.workflow),
  construite une seule fois même sous requêtes concurrentes.
Les tests remplacent get_workflow via app.dependency_overrides.
"""
import logging
import threading

from fastapi import Request

from bag2go.config import (
    ABANDONED_ORDER_MINUTES,
    BAG_PRICE_CENTS,
    CHECKOUT_CURRENCY,
    DISPATCH_LEASE_SECONDS,
    MAX_BAGS_PER_ORDER,
    NOTIFY_MAX_ATTEMPTS,
    ORDER_STORE_BACKEND,
    STRIPE_WEBHOOK_SECRET,
)
from bag2go.fulfillment.workflow import FulfillmentWorkflow
from bag2go.manifests.notifier import SendGridManifestNotifier
from bag2go.orders.memory import InMemoryOrderStore
from bag2go.orders.repository import SupabaseOrderStore
from bag2go.payments.stripe_client import StripeGateway

logger = logging.getLogger(__name__)

_workflow_lock = threading.Lock()


def build_store(backend: str = ORDER_STORE_BACKEND):
    if backend == "memory":
        logger.warning("fulfillment: store en mémoire (données perdues au redémarrage)")
        return InMemoryOrderStore()
    if backend != "supabase":
        raise RuntimeError(f"ORDER_STORE_BACKEND inconnu: {backend!r} (attendu: supabase | memory)")
    return SupabaseOrderStore()


def build_workflow(backend: str = ORDER_STORE_BACKEND) -> FulfillmentWorkflow:
    return FulfillmentWorkflow(
        build_store(backend),
        StripeGateway(),
        SendGridManifestNotifier(),
        webhook_secret=STRIPE_WEBHOOK_SECRET,
        bag_price_cents=BAG_PRICE_CENTS,
        currency=CHECKOUT_CURRENCY,
        max_bags=MAX_BAGS_PER_ORDER,
        lease_seconds=DISPATCH_LEASE_SECONDS,
        max_attempts=NOTIFY_MAX_ATTEMPTS,
        abandoned_after_minutes=ABANDONED_ORDER_MINUTES,
    )


def workflow_for_app(app) -> FulfillmentWorkflow:
    """Instance unique par app; construite sous verrou (requêtes concurrentes et passe de relance)."""
    workflow = getattr(app.state, "workflow", None)
    if workflow is None:
        with _workflow_lock:
            workflow = getattr(app.state, "workflow", None)
            if workflow is None:
                workflow = build_workflow()
                app.state.workflow = workflow
    return workflow


def get_workflow(request: Request) -> FulfillmentWorkflow:
    return workflow_for_app(request.app)
