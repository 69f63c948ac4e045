"""
Contrats des collaborateurs injectés dans FulfillmentWorkflow.
Implémentations:
- OrderStore: bag2go.orders.repository.SupabaseOrderStore, bag2go.orders.memory.InMemoryOrderStore
- PaymentGateway: bag2go.payments.stripe_client.StripeGateway
- ManifestNotifier: bag2go.manifests.notifier.SendGridManifestNotifier
"""
from datetime import datetime
from typing import Iterable, List, Optional, Protocol, Union

from bag2go.orders.models import Bag, BookingRequest, Order, OrderStatus
from bag2go.payments.stripe_client import PaymentEvent, PaymentSession


class OrderStore(Protocol):
    def create_order(self, details: BookingRequest, bag_count: int, user_id: Optional[str] = None) -> Order: ...

    def get_order(self, order_id: str) -> Optional[Order]: ...

    def update_status(self, order_id: str, expected: OrderStatus, new: OrderStatus) -> Order: ...

    def set_notifier_message_id(self, order_id: str, message_id: str) -> Order: ...

    def set_payment_ref(self, order_id: str, payment_ref: str) -> Order: ...

    def list_orders_for_user(self, user_id: str) -> List[Order]: ...

    def list_orders_by_status(self, statuses: Iterable[OrderStatus], limit: int = 100) -> List[Order]: ...

    def list_abandoned_orders(self, created_before: datetime, limit: int = 100) -> List[Order]: ...

    def claim_dispatch(self, order_id: str, claimant: str, lease_seconds: int) -> bool: ...

    def release_dispatch(self, order_id: str, claimant: str) -> None: ...

    def record_notify_failure(self, order_id: str, error: str) -> Order: ...


class PaymentGateway(Protocol):
    def create_payment_session(self, order: Order, amount: int, currency: str, success_ref: str, cancel_ref: str) -> PaymentSession: ...

    def verify_and_parse_event(self, raw_payload: Union[bytes, str], signature_header: Optional[str], shared_secret: str) -> PaymentEvent: ...


class ManifestNotifier(Protocol):
    def dispatch(self, order: Order, bags: Iterable[Bag]) -> str: ...
