"""
Lecture des métadonnées d'un événement Stripe Checkout (clé de corrélation commande).
"""
from typing import Any, Dict, Optional

# module bag2go.payments.metadata
def extract_session(event: Dict[str, Any]) -> Dict[str, Any]:
    """Retourne event.data.object (la session Checkout) ou {} si absent/mal formé."""
    data = (event or {}).get("data") if isinstance(event, dict) else None
    obj = (data or {}).get("object") if isinstance(data, dict) else None
    return obj if isinstance(obj, dict) else {}

def extract_order_id(event: Dict[str, Any]) -> Optional[str]:
    """
    Extrait l'identifiant de commande d'un event Stripe (webhook).
    - Priorité: metadata.order_id, puis metadata.orderId (sessions créées par l'ancien backend),
      puis client_reference_id.
    - Retourne None si aucune clé exploitable.
    """
    session = extract_session(event)
    meta = session.get("metadata") or {}
    if not isinstance(meta, dict):
        meta = {}
    for candidate in (meta.get("order_id"), meta.get("orderId"), session.get("client_reference_id")):
        value = str(candidate or "").strip()
        if value:
            return value
    return None
