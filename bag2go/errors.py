"""
Taxonomie des erreurs métier du fulfillment.
- ValidationError / SignatureError: terminales pour la requête déclenchante.
- ConflictError: compare-and-set perdu, toujours traité en interne par le workflow.
- NotifierError: échec de dispatch du manifeste, récupérable via relance.
- InvariantViolation: incohérence interne, signal de bug (log critique).
Le mapping HTTP est centralisé dans bag2go.app_setup.exceptions.
"""
from typing import Any, Dict, List, Optional


class Bag2GoError(Exception):
    """Racine des erreurs métier Bag2Go."""


class ValidationError(Bag2GoError):
    def __init__(self, fields: List[Dict[str, str]], message: str = "Réservation invalide"):
        super().__init__(message)
        self.message = message
        self.fields = fields

    @property
    def field_names(self) -> List[str]:
        return [f.get("field", "") for f in self.fields]


class SignatureError(Bag2GoError):
    """Événement de paiement non authentifié ou illisible."""


class ConflictError(Bag2GoError):
    def __init__(self, order_id: str, expected: Any, actual: Any):
        super().__init__(f"Conflit sur la commande {order_id}: attendu={expected} actuel={actual}")
        self.order_id = order_id
        self.expected = expected
        self.actual = actual


class OrderNotFound(Bag2GoError):
    def __init__(self, order_id: Optional[str]):
        super().__init__(f"Commande introuvable: {order_id}")
        self.order_id = order_id


class NotifierError(Bag2GoError):
    """Dispatch du manifeste en échec (réseau, timeout, refus du fournisseur)."""


class PaymentGatewayError(Bag2GoError):
    """Création de session de paiement impossible."""


class BookingError(Bag2GoError):
    def __init__(self, message: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.order_id = order_id


class InvariantViolation(Bag2GoError):
    """Incohérence interne: ne doit jamais arriver en fonctionnement normal."""
