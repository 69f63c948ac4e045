from typing import Any, Dict, List

from bag2go.errors import OrderNotFound
from bag2go.orders.models import Order

_PUBLIC_FIELDS = {
    "id",
    "status",
    "first_name",
    "last_name",
    "email",
    "phone",
    "pickup_address",
    "pickup_time",
    "airline_code",
    "flight_number",
    "flight_date",
    "haz_items",
    "declarations",
    "created_at",
    "updated_at",
}

def to_public_dict(order: Order) -> Dict[str, Any]:
    """
    Projection « client » d'une commande (historique, page résumé).
    - Masque les champs internes (payment_ref, lease, erreurs de dispatch).
    - Expose 'notified' (bool) au lieu de l'identifiant du message fournisseur.
    - Bagages triés par position: tag_number, weight_kg, position.
    """
    data = order.model_dump(mode="json", include=_PUBLIC_FIELDS)
    data["notified"] = order.is_notified
    data["bags"] = [
        {"tag_number": b.tag_number, "weight_kg": b.weight_kg, "position": b.position}
        for b in sorted(order.bags, key=lambda b: b.position)
    ]
    return data

def to_admin_dict(order: Order) -> Dict[str, Any]:
    """Projection opérateur: tout le modèle (statut, tentatives, dernière erreur, message id)."""
    return order.model_dump(mode="json")

def get_user_orders(store, user_id: str) -> List[Dict[str, Any]]:
    """
    Historique des commandes d'un utilisateur (ordre d'insertion stable).
    - Délègue au store (list_orders_for_user) puis projette en dict public.
    """
    return [to_public_dict(o) for o in store.list_orders_for_user(user_id)]

def get_order_for_user(store, order_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
    """
    Détail d'une commande pour son propriétaire (ou un admin).
    - OrderNotFound si la commande n'existe pas ou appartient à un autre utilisateur
      (pas de distinction pour ne rien divulguer).
    """
    order = store.get_order(order_id)
    if order is None:
        raise OrderNotFound(order_id)
    if user.get("role") != "admin" and order.user_id != user.get("id"):
        raise OrderNotFound(order_id)
    return to_public_dict(order)
