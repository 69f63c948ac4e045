# module bag2go.orders.memory
"""Store des commandes en mémoire (dev local, démos, tests).
- Même contrat que SupabaseOrderStore (compare-and-set, set-once, leases).
- Le verrou émule l'atomicité d'une ligne en base: chaque opération est une écriture conditionnelle unique.
- Retourne toujours des copies profondes: aucun appelant ne partage l'état interne.
"""
import threading
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from bag2go.errors import ConflictError, InvariantViolation, OrderNotFound
from bag2go.orders.models import BookingRequest, Order, OrderStatus, ensure_transition, new_order, utcnow


class InMemoryOrderStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._orders: Dict[str, Order] = {}
        self._leases: Dict[str, tuple] = {}

    def _require(self, order_id: str) -> Order:
        order = self._orders.get(str(order_id))
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def create_order(self, details: BookingRequest, bag_count: int, user_id: Optional[str] = None) -> Order:
        order = new_order(details, bag_count, user_id=user_id)
        with self._lock:
            self._orders[order.id] = order
            return order.model_copy(deep=True)

    def get_order(self, order_id: str) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(str(order_id))
            return order.model_copy(deep=True) if order else None

    def update_status(self, order_id: str, expected: OrderStatus, new: OrderStatus) -> Order:
        ensure_transition(expected, new)
        with self._lock:
            order = self._require(order_id)
            if order.status != expected:
                raise ConflictError(order.id, expected, order.status)
            order.status = OrderStatus(new)
            order.updated_at = utcnow()
            return order.model_copy(deep=True)

    def set_notifier_message_id(self, order_id: str, message_id: str) -> Order:
        with self._lock:
            order = self._require(order_id)
            if order.notifier_message_id and order.notifier_message_id != message_id:
                raise InvariantViolation(
                    f"notifier_message_id déjà enregistré pour {order.id}: {order.notifier_message_id} != {message_id}"
                )
            order.notifier_message_id = message_id
            order.updated_at = utcnow()
            return order.model_copy(deep=True)

    def set_payment_ref(self, order_id: str, payment_ref: str) -> Order:
        with self._lock:
            order = self._require(order_id)
            if order.payment_ref and order.payment_ref != payment_ref:
                raise InvariantViolation(f"payment_ref déjà enregistré pour {order.id}")
            order.payment_ref = payment_ref
            order.updated_at = utcnow()
            return order.model_copy(deep=True)

    def list_orders_for_user(self, user_id: str) -> List[Order]:
        # dict conserve l'ordre d'insertion
        with self._lock:
            return [o.model_copy(deep=True) for o in self._orders.values() if o.user_id == user_id]

    def list_orders_by_status(self, statuses: Iterable[OrderStatus], limit: int = 100) -> List[Order]:
        wanted = {OrderStatus(s) for s in statuses}
        with self._lock:
            rows = [o.model_copy(deep=True) for o in self._orders.values() if o.status in wanted]
        return rows[:limit]

    def list_abandoned_orders(self, created_before: datetime, limit: int = 100) -> List[Order]:
        with self._lock:
            rows = [
                o.model_copy(deep=True) for o in self._orders.values()
                if o.status == OrderStatus.PENDING and not o.payment_ref and o.created_at < created_before
            ]
        return sorted(rows, key=lambda o: o.created_at)[:limit]

    def claim_dispatch(self, order_id: str, claimant: str, lease_seconds: int) -> bool:
        now = utcnow()
        with self._lock:
            self._require(order_id)
            current = self._leases.get(str(order_id))
            if current and current[0] != claimant and current[1] > now:
                return False
            self._leases[str(order_id)] = (claimant, now + timedelta(seconds=lease_seconds))
            return True

    def release_dispatch(self, order_id: str, claimant: str) -> None:
        with self._lock:
            current = self._leases.get(str(order_id))
            if current and current[0] == claimant:
                del self._leases[str(order_id)]

    def record_notify_failure(self, order_id: str, error: str) -> Order:
        with self._lock:
            order = self._require(order_id)
            order.notify_attempts += 1
            order.last_error = (error or "")[:500]
            order.updated_at = utcnow()
            return order.model_copy(deep=True)

    def lease_of(self, order_id: str) -> Optional[tuple]:
        """Lecture du lease courant (claimant, expiration), utile au diagnostic."""
        with self._lock:
            return self._leases.get(str(order_id))

    def ping(self) -> bool:
        return True
