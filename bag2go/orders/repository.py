"""
Accès aux données pour la feature 'orders' (Supabase / PostgREST, service-role).

Tables attendues:
- orders(id uuid pk, user_id, first_name, last_name, email, phone, pickup_address,
  pickup_time timestamptz, airline_code, flight_number, flight_date date, haz_items bool,
  declarations, status text, payment_ref text unique, notifier_message_id text,
  notify_attempts int default 0, last_error text, dispatch_claim text,
  dispatch_lease_until timestamptz, created_at timestamptz, updated_at timestamptz)
- bags(id uuid pk, order_id uuid references orders(id) on delete cascade,
  tag_number text, weight_kg numeric default 0, position int, unique(order_id, tag_number))

Chaque mutation est un unique UPDATE conditionnel: la représentation renvoyée par
PostgREST indique si la condition a matché (compare-and-set sans verrou applicatif).
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from bag2go.errors import ConflictError, InvariantViolation, OrderNotFound
from bag2go.orders.models import (
    BookingRequest,
    Order,
    OrderStatus,
    ensure_transition,
    is_valid_order_id,
    new_order,
    utcnow,
)

logger = logging.getLogger(__name__)

ORDERS_TABLE = "orders"
BAGS_TABLE = "bags"
ORDER_SELECT = "*, bags(*)"


def _pg_ts(value: datetime) -> str:
    # Format sans '.' ni '+' pour rester sûr dans les filtres or=(...)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def _row_to_order(row: Dict[str, Any]) -> Order:
    bags = sorted(row.get("bags") or [], key=lambda b: b.get("position") or 0)
    return Order.model_validate({**row, "bags": bags})


# module bag2go.orders.repository
class SupabaseOrderStore:
    def __init__(self, client_factory=None):
        """
        client_factory: callable retournant un client Supabase (défaut: get_service_supabase).
        Le client est résolu à chaque appel pour rester patchable en tests.
        """
        if client_factory is None:
            from bag2go.infra.supabase_client import get_service_supabase
            client_factory = get_service_supabase
        self._client_factory = client_factory

    def _table(self, name: str):
        return self._client_factory().table(name)

    def create_order(self, details: BookingRequest, bag_count: int, user_id: Optional[str] = None) -> Order:
        """
        Insère la commande PENDING puis ses bagages.
        - En cas d'échec sur les bagages: supprime la commande (cascade) et relance l'erreur.
        """
        order = new_order(details, bag_count, user_id=user_id)
        self._table(ORDERS_TABLE).insert(order.model_dump(mode="json", exclude={"bags"})).execute()
        try:
            self._table(BAGS_TABLE).insert([b.model_dump(mode="json") for b in order.bags]).execute()
        except Exception:
            logger.exception("orders.repository.create_order bags insert failed order_id=%s", order.id)
            self._table(ORDERS_TABLE).delete().eq("id", order.id).execute()
            raise
        return order

    def get_order(self, order_id: str) -> Optional[Order]:
        if not is_valid_order_id(order_id):
            return None
        res = self._table(ORDERS_TABLE).select(ORDER_SELECT).eq("id", str(order_id)).limit(1).execute()
        rows = res.data or []
        return _row_to_order(rows[0]) if rows else None

    def _require(self, order_id: str) -> Order:
        order = self.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def update_status(self, order_id: str, expected: OrderStatus, new: OrderStatus) -> Order:
        ensure_transition(expected, new)
        res = (
            self._table(ORDERS_TABLE)
            .update({"status": OrderStatus(new).value, "updated_at": utcnow().isoformat()})
            .eq("id", str(order_id))
            .eq("status", OrderStatus(expected).value)
            .execute()
        )
        if res.data:
            return self._require(order_id)
        current = self._require(order_id)
        raise ConflictError(current.id, OrderStatus(expected), current.status)

    def _set_once(self, order_id: str, column: str, value: str) -> Order:
        res = (
            self._table(ORDERS_TABLE)
            .update({column: value, "updated_at": utcnow().isoformat()})
            .eq("id", str(order_id))
            .is_(column, "null")
            .execute()
        )
        current = self._require(order_id)
        if res.data or getattr(current, column) == value:
            return current
        raise InvariantViolation(f"{column} déjà enregistré pour {current.id}: {getattr(current, column)} != {value}")

    def set_notifier_message_id(self, order_id: str, message_id: str) -> Order:
        return self._set_once(order_id, "notifier_message_id", message_id)

    def set_payment_ref(self, order_id: str, payment_ref: str) -> Order:
        return self._set_once(order_id, "payment_ref", payment_ref)

    def list_orders_for_user(self, user_id: str) -> List[Order]:
        res = (
            self._table(ORDERS_TABLE)
            .select(ORDER_SELECT)
            .eq("user_id", user_id)
            .order("created_at")
            .execute()
        )
        return [_row_to_order(r) for r in (res.data or [])]

    def list_orders_by_status(self, statuses: Iterable[OrderStatus], limit: int = 100) -> List[Order]:
        values = [OrderStatus(s).value for s in statuses]
        if not values:
            return []
        res = (
            self._table(ORDERS_TABLE)
            .select(ORDER_SELECT)
            .in_("status", values)
            .order("updated_at")
            .limit(limit)
            .execute()
        )
        return [_row_to_order(r) for r in (res.data or [])]

    def list_abandoned_orders(self, created_before: datetime, limit: int = 100) -> List[Order]:
        """Commandes PENDING sans session de paiement créées avant created_before (filtrées en base)."""
        res = (
            self._table(ORDERS_TABLE)
            .select(ORDER_SELECT)
            .eq("status", OrderStatus.PENDING.value)
            .is_("payment_ref", "null")
            .lt("created_at", _pg_ts(created_before))
            .order("created_at")
            .limit(limit)
            .execute()
        )
        return [_row_to_order(r) for r in (res.data or [])]

    def claim_dispatch(self, order_id: str, claimant: str, lease_seconds: int) -> bool:
        """
        Pose le lease de dispatch si aucun lease non expiré n'existe (ou s'il appartient déjà à claimant).
        """
        now = utcnow()
        res = (
            self._table(ORDERS_TABLE)
            .update({
                "dispatch_claim": claimant,
                "dispatch_lease_until": (now + timedelta(seconds=lease_seconds)).isoformat(),
            })
            .eq("id", str(order_id))
            .or_(
                f"dispatch_lease_until.is.null,"
                f"dispatch_lease_until.lt.{_pg_ts(now)},"
                f"dispatch_claim.eq.{claimant}"
            )
            .execute()
        )
        return bool(res.data)

    def release_dispatch(self, order_id: str, claimant: str) -> None:
        (
            self._table(ORDERS_TABLE)
            .update({"dispatch_claim": None, "dispatch_lease_until": None})
            .eq("id", str(order_id))
            .eq("dispatch_claim", claimant)
            .execute()
        )

    def record_notify_failure(self, order_id: str, error: str) -> Order:
        # Appelé uniquement par le détenteur du lease: pas de course sur le compteur
        current = self._require(order_id)
        (
            self._table(ORDERS_TABLE)
            .update({
                "notify_attempts": current.notify_attempts + 1,
                "last_error": (error or "")[:500],
                "updated_at": utcnow().isoformat(),
            })
            .eq("id", current.id)
            .execute()
        )
        return self._require(order_id)

    def ping(self) -> bool:
        self._table(ORDERS_TABLE).select("id").limit(1).execute()
        return True
