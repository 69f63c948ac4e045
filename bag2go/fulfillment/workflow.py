"""Workflow de fulfillment: réservation -> paiement -> manifeste compagnie.

Machine à états (portée par le store, jamais de régression):
    PENDING -> PAYMENT_CONFIRMED -> NOTIFIED
    PAYMENT_CONFIRMED -> NOTIFY_FAILED -> NOTIFIED (relance)
    PENDING -> CANCELLED

Concurrence:
- Aucun verrou en mémoire: plusieurs instances (process) partagent le même store.
- Chaque transition est un compare-and-set (store.update_status); un conflit signifie
  « quelqu'un d'autre a déjà avancé », on relit et on décide.
- L'envoi du manifeste est protégé par notifier_message_id (garde relue juste avant l'envoi)
  et par un lease de dispatch par commande (store.claim_dispatch), qui ferme la course
  entre deux livraisons concurrentes du même événement.
- Les échecs du notifier ne remontent jamais vers Stripe: la commande passe en NOTIFY_FAILED
  et sera relancée (retry_notification / run_retry_sweep).
"""
import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from bag2go.config import (
    ABANDONED_ORDER_MINUTES,
    BAG_PRICE_CENTS,
    CHECKOUT_CURRENCY,
    DISPATCH_LEASE_SECONDS,
    MAX_BAGS_PER_ORDER,
    NOTIFY_MAX_ATTEMPTS,
)
from bag2go.errors import (
    BookingError,
    ConflictError,
    NotifierError,
    OrderNotFound,
    SignatureError,
    ValidationError,
)
from bag2go.fulfillment.ports import ManifestNotifier, OrderStore, PaymentGateway
from bag2go.orders.models import ALLOWED_TRANSITIONS, BookingRequest, Order, OrderStatus, utcnow
from bag2go.payments.stripe_client import PaymentEvent, PaymentSession

logger = logging.getLogger(__name__)

IGNORED = "ignored"
UNKNOWN_ORDER = "unknown_order"
CANCELLED = "cancelled"
NOTIFIED = "notified"
ALREADY_NOTIFIED = "already_notified"
NOTIFY_FAILED = "notify_failed"
IN_PROGRESS = "in_progress"
NOT_PAYABLE = "not_payable"

RETRYABLE_STATUSES = (OrderStatus.PAYMENT_CONFIRMED, OrderStatus.NOTIFY_FAILED)


class FulfillmentOutcome(BaseModel):
    status: str
    order_id: Optional[str] = None
    detail: Optional[str] = None


class BookingResult(BaseModel):
    order: Order
    session: PaymentSession


def _fields_from_pydantic(exc: PydanticValidationError) -> List[Dict[str, str]]:
    """Convertit les erreurs pydantic en [{field, message}] (noms snake_case, un seul message par champ)."""
    alias_to_name = {(f.alias or name): name for name, f in BookingRequest.model_fields.items()}
    fields: List[Dict[str, str]] = []
    seen = set()
    for err in exc.errors():
        loc = err.get("loc") or ()
        head = str(loc[0]) if loc else "body"
        name = alias_to_name.get(head, head)
        if name in seen:
            continue
        seen.add(name)
        fields.append({"field": name, "message": str(err.get("msg") or "invalide")})
    return fields


class FulfillmentWorkflow:
    def __init__(
        self,
        store: OrderStore,
        gateway: PaymentGateway,
        notifier: ManifestNotifier,
        *,
        webhook_secret: str,
        bag_price_cents: int = BAG_PRICE_CENTS,
        currency: str = CHECKOUT_CURRENCY,
        max_bags: int = MAX_BAGS_PER_ORDER,
        lease_seconds: int = DISPATCH_LEASE_SECONDS,
        max_attempts: int = NOTIFY_MAX_ATTEMPTS,
        abandoned_after_minutes: int = ABANDONED_ORDER_MINUTES,
    ):
        self.store = store
        self.gateway = gateway
        self.notifier = notifier
        self.webhook_secret = webhook_secret
        self.bag_price_cents = bag_price_cents
        self.currency = currency
        self.max_bags = max_bags
        self.lease_seconds = lease_seconds
        self.max_attempts = max_attempts
        self.abandoned_after_minutes = abandoned_after_minutes

    # --- Réservation ---

    def validate_booking(self, payload: Any) -> BookingRequest:
        """
        Valide le payload de réservation.
        - ValidationError listant chaque champ fautif (absent, mal formé, bags < 1 ou > max).
        - Aucun état créé en cas d'erreur.
        """
        if not isinstance(payload, dict):
            raise ValidationError([{"field": "body", "message": "Objet JSON attendu"}])
        try:
            booking = BookingRequest.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(_fields_from_pydantic(e)) from e
        if booking.bags > self.max_bags:
            raise ValidationError([{"field": "bags", "message": f"Maximum {self.max_bags} bagages par commande"}])
        return booking

    def book(self, user_id: Optional[str], payload: Any, success_ref: str, cancel_ref: str) -> BookingResult:
        """
        Réservation complète: validation -> commande PENDING -> session de paiement.
        - Échec de la session: la commande est annulée (compensation) puis BookingError est levée;
          aucune commande impayable ne reste PENDING sans session.
        - Succès: la référence de session est enregistrée (set-once) avant d'être renvoyée.
        """
        booking = self.validate_booking(payload)
        order = self.store.create_order(booking, booking.bags, user_id=user_id)
        amount = booking.bags * self.bag_price_cents
        try:
            session = self.gateway.create_payment_session(order, amount, self.currency, success_ref, cancel_ref)
        except Exception as e:
            logger.exception("fulfillment.book payment session failed order_id=%s", order.id)
            self._cancel_unpayable(order.id)
            raise BookingError("Impossible de créer la session de paiement", order_id=order.id) from e
        order = self.store.set_payment_ref(order.id, session.id)
        logger.info("fulfillment.book order_id=%s bags=%s session_id=%s", order.id, len(order.bags), session.id)
        return BookingResult(order=order, session=session)

    def _cancel_unpayable(self, order_id: str) -> None:
        try:
            self.store.update_status(order_id, OrderStatus.PENDING, OrderStatus.CANCELLED)
        except ConflictError as e:
            logger.warning("fulfillment.book compensation skipped order_id=%s status=%s", order_id, e.actual)
        except Exception:
            # La commande reste PENDING sans session: le sweep l'annulera
            logger.exception("fulfillment.book compensation failed order_id=%s", order_id)

    # --- Événements de paiement ---

    def handle_payment_event(self, raw_payload: Union[bytes, str], signature_header: Optional[str]) -> FulfillmentOutcome:
        """
        Traite une livraison (au moins une fois, possiblement dupliquée) d'un webhook Stripe.
        a) signature vérifiée avant toute lecture/écriture (SignatureError sinon);
        b) commande introuvable: acquittée sans mutation;
        c) PENDING -> PAYMENT_CONFIRMED en compare-and-set; conflit = doublon, on continue;
        d) manifeste envoyé si notifier_message_id absent;
        e) l'appelant acquitte quel que soit le résultat du notifier.
        """
        try:
            event = self.gateway.verify_and_parse_event(raw_payload, signature_header, self.webhook_secret)
        except SignatureError as e:
            logger.warning("fulfillment.webhook signature rejected (possible integrity incident): %s", e)
            raise

        if event.is_confirmation:
            return self._on_payment_confirmed(event)
        if event.is_cancellation:
            return self._on_payment_cancelled(event)
        logger.info("fulfillment.webhook ignored event_id=%s type=%s", event.id, event.type)
        return FulfillmentOutcome(status=IGNORED, order_id=event.correlation_key)

    def _resolve(self, event: PaymentEvent) -> Optional[Order]:
        order = self.store.get_order(event.correlation_key) if event.correlation_key else None
        if order is None:
            logger.warning(
                "fulfillment.webhook unknown order event_id=%s type=%s key=%s",
                event.id, event.type, event.correlation_key,
            )
        return order

    def _on_payment_confirmed(self, event: PaymentEvent) -> FulfillmentOutcome:
        order = self._resolve(event)
        if order is None:
            return FulfillmentOutcome(status=UNKNOWN_ORDER, order_id=event.correlation_key)

        try:
            order = self.store.update_status(order.id, OrderStatus.PENDING, OrderStatus.PAYMENT_CONFIRMED)
            logger.info("fulfillment.webhook payment confirmed order_id=%s event_id=%s", order.id, event.id)
        except ConflictError as e:
            logger.info("fulfillment.webhook duplicate delivery order_id=%s status=%s event_id=%s", order.id, e.actual, event.id)
            order = self.store.get_order(order.id) or order

        if order.status == OrderStatus.CANCELLED:
            logger.error(
                "fulfillment.webhook payment received for cancelled order order_id=%s session_id=%s: refund required",
                order.id, event.session_id,
            )
            return FulfillmentOutcome(status=CANCELLED, order_id=order.id)
        return self._ensure_notified(order.id)

    def _on_payment_cancelled(self, event: PaymentEvent) -> FulfillmentOutcome:
        order = self._resolve(event)
        if order is None:
            return FulfillmentOutcome(status=UNKNOWN_ORDER, order_id=event.correlation_key)
        try:
            self.store.update_status(order.id, OrderStatus.PENDING, OrderStatus.CANCELLED)
        except ConflictError as e:
            logger.info("fulfillment.webhook cancellation ignored order_id=%s status=%s", order.id, e.actual)
            return FulfillmentOutcome(status=IGNORED, order_id=order.id, detail=OrderStatus(e.actual).value)
        logger.info("fulfillment.webhook order cancelled order_id=%s type=%s", order.id, event.type)
        return FulfillmentOutcome(status=CANCELLED, order_id=order.id)

    # --- Notification (chemin commun webhook / relance) ---

    def retry_notification(self, order_id: str) -> FulfillmentOutcome:
        """
        Relance opérateur ou planifiée de l'envoi du manifeste.
        - OrderNotFound si la commande n'existe pas.
        - Sûre en concurrence avec une livraison tardive du webhook (même garde, même lease).
        """
        order = self.store.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return self._ensure_notified(order.id)

    def _ensure_notified(self, order_id: str) -> FulfillmentOutcome:
        order = self.store.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        if order.notifier_message_id:
            self._complete_notified(order)
            return FulfillmentOutcome(status=ALREADY_NOTIFIED, order_id=order.id)
        if order.status not in RETRYABLE_STATUSES:
            return FulfillmentOutcome(status=NOT_PAYABLE, order_id=order.id, detail=order.status.value)

        claimant = uuid.uuid4().hex
        if not self.store.claim_dispatch(order.id, claimant, self.lease_seconds):
            logger.info("fulfillment.notify dispatch in progress elsewhere order_id=%s", order.id)
            return FulfillmentOutcome(status=IN_PROGRESS, order_id=order.id)
        try:
            # Garde relue sous lease, juste avant l'envoi
            order = self.store.get_order(order.id) or order
            if order.notifier_message_id:
                self._complete_notified(order)
                return FulfillmentOutcome(status=ALREADY_NOTIFIED, order_id=order.id)
            try:
                message_id = self.notifier.dispatch(order, order.bags)
            except NotifierError as e:
                return self._record_failure(order, e)
            order = self.store.set_notifier_message_id(order.id, message_id)
            self._complete_notified(order)
            logger.info("fulfillment.notify manifest sent order_id=%s message_id=%s", order.id, message_id)
            return FulfillmentOutcome(status=NOTIFIED, order_id=order.id, detail=message_id)
        finally:
            self.store.release_dispatch(order.id, claimant)

    def _complete_notified(self, order: Order) -> None:
        """Amène la commande à NOTIFIED (message id déjà enregistré), en compare-and-set."""
        current = order
        for _ in range(3):
            if current.status == OrderStatus.NOTIFIED:
                return
            if OrderStatus.NOTIFIED not in ALLOWED_TRANSITIONS[current.status]:
                logger.error(
                    "fulfillment.notify message id set but status=%s order_id=%s",
                    current.status.value, current.id,
                )
                return
            try:
                self.store.update_status(current.id, current.status, OrderStatus.NOTIFIED)
                return
            except ConflictError:
                current = self.store.get_order(current.id) or current
        logger.warning("fulfillment.notify could not settle NOTIFIED order_id=%s", current.id)

    def _record_failure(self, order: Order, error: NotifierError) -> FulfillmentOutcome:
        logger.warning("fulfillment.notify dispatch failed order_id=%s error=%s", order.id, error)
        if order.status == OrderStatus.PAYMENT_CONFIRMED:
            try:
                self.store.update_status(order.id, OrderStatus.PAYMENT_CONFIRMED, OrderStatus.NOTIFY_FAILED)
            except ConflictError as e:
                logger.info("fulfillment.notify failure transition skipped order_id=%s status=%s", order.id, e.actual)
        self.store.record_notify_failure(order.id, str(error))
        return FulfillmentOutcome(status=NOTIFY_FAILED, order_id=order.id, detail=str(error))

    # --- Surface opérateur / relances ---

    def orders_by_status(self, statuses: Iterable[OrderStatus], limit: int = 100) -> List[Order]:
        return self.store.list_orders_by_status(statuses, limit)

    def run_retry_sweep(self, limit: int = 50) -> Dict[str, int]:
        """
        Passe de relance indépendante du webhook.
        - Relance NOTIFY_FAILED et PAYMENT_CONFIRMED tant que notify_attempts < max_attempts
          (au-delà: intervention opérateur via retry_notification).
        - Annule les commandes PENDING sans session plus vieilles que abandoned_after_minutes.
        """
        summary = {"retried": 0, "notified": 0, "failed": 0, "skipped": 0, "cancelled": 0}
        for order in self.store.list_orders_by_status(RETRYABLE_STATUSES, limit):
            if order.notify_attempts >= self.max_attempts:
                summary["skipped"] += 1
                continue
            try:
                outcome = self._ensure_notified(order.id)
            except Exception:
                logger.exception("fulfillment.sweep retry crashed order_id=%s", order.id)
                summary["failed"] += 1
                continue
            summary["retried"] += 1
            if outcome.status in (NOTIFIED, ALREADY_NOTIFIED):
                summary["notified"] += 1
            elif outcome.status == NOTIFY_FAILED:
                summary["failed"] += 1
            else:
                summary["skipped"] += 1
        summary["cancelled"] = self.cancel_abandoned_orders(limit)
        if any(summary.values()):
            logger.info("fulfillment.sweep %s", summary)
        return summary

    def cancel_abandoned_orders(self, limit: int = 100) -> int:
        cutoff = utcnow() - timedelta(minutes=self.abandoned_after_minutes)
        cancelled = 0
        for order in self.store.list_abandoned_orders(cutoff, limit):
            try:
                self.store.update_status(order.id, OrderStatus.PENDING, OrderStatus.CANCELLED)
                cancelled += 1
                logger.info("fulfillment.sweep abandoned order cancelled order_id=%s", order.id)
            except ConflictError:
                continue
        return cancelled
