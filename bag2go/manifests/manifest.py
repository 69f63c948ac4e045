"""
Construction du manifeste (logique pure, pas de réseau).
"""
import json
from typing import Any, Dict, Iterable, List

def build_manifest_rows(order, bags: Iterable) -> List[Dict[str, Any]]:
    """
    Une ligne par bagage: {bag_tag, weight_kg, passenger}.
    - passenger: référence passager NOM/PRENOM de la commande.
    - Ordre: position du bagage dans la commande.
    """
    passenger = order.passenger_reference or "UNKNOWN"
    return [
        {"bag_tag": b.tag_number, "weight_kg": float(b.weight_kg or 0), "passenger": passenger}
        for b in sorted(bags, key=lambda b: b.position)
    ]

def manifest_filename(order) -> str:
    return f"manifest-{order.id}.json"

def manifest_subject(order) -> str:
    return f"Bag 2 Go manifest - {order.airline_code} {order.flight_number} ({order.flight_date.isoformat()})"

def manifest_json(rows: List[Dict[str, Any]]) -> str:
    return json.dumps(rows, indent=2)
