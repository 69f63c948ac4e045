"""
Adaptateur Stripe: centralise les appels et la configuration Stripe.
- Sessions Checkout (une par commande, clé d'idempotence dérivée de l'id commande).
- Vérification de signature des webhooks: frontière de sécurité, pas une simple étape de parsing.
"""
import json
import logging
from typing import Any, Dict, Optional, Union

import stripe
from pydantic import BaseModel

from bag2go.errors import PaymentGatewayError, SignatureError
from bag2go.payments import metadata as payments_metadata

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
SESSION_EXPIRED = "checkout.session.expired"
ASYNC_PAYMENT_FAILED = "checkout.session.async_payment_failed"

CANCELLATION_EVENT_TYPES = frozenset({SESSION_EXPIRED, ASYNC_PAYMENT_FAILED})
PAID_PAYMENT_STATUSES = frozenset({"paid", "no_payment_required"})

_http_client_configured = False


class PaymentSession(BaseModel):
    id: str
    url: Optional[str] = None


class PaymentEvent(BaseModel):
    id: Optional[str] = None
    type: str
    correlation_key: Optional[str] = None
    payment_status: Optional[str] = None
    session_id: Optional[str] = None

    @property
    def is_confirmation(self) -> bool:
        if self.type == ASYNC_PAYMENT_SUCCEEDED:
            return True
        return self.type == CHECKOUT_COMPLETED and (self.payment_status or "") in PAID_PAYMENT_STATUSES

    @property
    def is_cancellation(self) -> bool:
        return self.type in CANCELLATION_EVENT_TYPES


# module bag2go.payments.stripe_client
def require_stripe():
    """
    Prépare et retourne le module stripe prêt à l'emploi.
    - Configure stripe.api_key via STRIPE_SECRET_KEY si disponible.
    - Borne chaque appel réseau (STRIPE_TIMEOUT_SECONDS) et les retries SDK.
    - En absence de clé, les appels Stripe échoueront côté SDK (ex: No API key provided).
    """
    global _http_client_configured
    from bag2go.config import STRIPE_SECRET_KEY, STRIPE_TIMEOUT_SECONDS, STRIPE_MAX_NETWORK_RETRIES
    if STRIPE_SECRET_KEY:
        stripe.api_key = STRIPE_SECRET_KEY
    if not _http_client_configured:
        stripe.default_http_client = stripe.RequestsClient(timeout=STRIPE_TIMEOUT_SECONDS)
        stripe.max_network_retries = STRIPE_MAX_NETWORK_RETRIES
        _http_client_configured = True
    return stripe


class StripeGateway:
    def __init__(self, tolerance: int = 300):
        # tolerance: âge maximal (secondes) de l'horodatage signé d'un webhook
        self.tolerance = tolerance

    def create_payment_session(self, order, amount: int, currency: str, success_ref: str, cancel_ref: str) -> PaymentSession:
        """
        Crée une session Stripe Checkout pour la commande.
        - amount: montant total en centimes; une seule ligne « Bag pickup ».
        - metadata.order_id + client_reference_id: clé de corrélation lue par le webhook.
        - idempotency_key: une relance de la même réservation ne crée pas de seconde session.
        Erreurs: PaymentGatewayError (erreur SDK, réseau, timeout, réponse sans id).
        """
        require_stripe()
        bag_count = len(order.bags) or 1
        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                customer_email=order.email,
                client_reference_id=order.id,
                line_items=[{
                    "quantity": 1,
                    "price_data": {
                        "currency": currency,
                        "unit_amount": int(amount),
                        "product_data": {
                            "name": f"Bag pickup - {bag_count} bag{'s' if bag_count > 1 else ''}",
                            "description": f"{order.airline_code} {order.flight_number}",
                        },
                    },
                }],
                metadata={"order_id": order.id},
                success_url=success_ref,
                cancel_url=cancel_ref,
                payment_method_types=["card"],
                idempotency_key=f"checkout-{order.id}",
            )
        except stripe.StripeError as e:
            logger.exception("payments.stripe create_session failed order_id=%s", order.id)
            raise PaymentGatewayError(str(e)) from e
        # StripeObject (attributs) ou dict selon la version du SDK
        session_id = getattr(session, "id", None) or (session.get("id") if isinstance(session, dict) else None)
        url = getattr(session, "url", None) or (session.get("url") if isinstance(session, dict) else None)
        if not session_id:
            raise PaymentGatewayError("Session Stripe invalide (id manquant)")
        return PaymentSession(id=session_id, url=url)

    def verify_and_parse_event(
        self,
        raw_payload: Union[bytes, str],
        signature_header: Optional[str],
        shared_secret: str,
    ) -> PaymentEvent:
        """
        Valide la signature Stripe-Signature puis parse l'événement.
        - Rejette (SignatureError) si: secret non configuré, en-tête absent, payload non UTF-8,
          signature/horodatage invalides, JSON mal formé.
        - Aucun état n'est lu ni modifié ici.
        """
        if not shared_secret:
            logger.error("payments.stripe webhook secret non configuré: événement rejeté")
            raise SignatureError("Secret webhook non configuré")
        if not signature_header:
            raise SignatureError("En-tête Stripe-Signature manquant")
        try:
            payload = raw_payload.decode("utf-8") if isinstance(raw_payload, (bytes, bytearray)) else str(raw_payload)
        except UnicodeDecodeError as e:
            raise SignatureError("Payload non UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(payload, signature_header, shared_secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            raise SignatureError(str(e)) from e

        try:
            event: Dict[str, Any] = json.loads(payload)
        except ValueError as e:
            raise SignatureError("Payload JSON invalide") from e
        if not isinstance(event, dict) or not event.get("type"):
            raise SignatureError("Événement Stripe mal formé")

        session = payments_metadata.extract_session(event)
        return PaymentEvent(
            id=event.get("id"),
            type=str(event.get("type")),
            correlation_key=payments_metadata.extract_order_id(event),
            payment_status=session.get("payment_status"),
            session_id=session.get("id"),
        )
