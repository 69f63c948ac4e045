# module bag2go.orders.models
"""Modèles de la feature 'orders'.
- OrderStatus + ALLOWED_TRANSITIONS: machine à états du fulfillment (jamais de régression).
- Order / Bag: commande et bagages tels que persistés par le store.
- BookingRequest: payload de réservation validé (accepte aussi le camelCase du frontend).
"""
import re
import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from bag2go.errors import InvariantViolation, ValidationError


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    NOTIFIED = "NOTIFIED"
    NOTIFY_FAILED = "NOTIFY_FAILED"
    CANCELLED = "CANCELLED"


ALLOWED_TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAYMENT_CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.PAYMENT_CONFIRMED: frozenset({OrderStatus.NOTIFIED, OrderStatus.NOTIFY_FAILED}),
    OrderStatus.NOTIFY_FAILED: frozenset({OrderStatus.NOTIFIED}),
    OrderStatus.NOTIFIED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def ensure_transition(current: OrderStatus, new: OrderStatus) -> None:
    """Lève InvariantViolation si la transition current -> new n'est pas autorisée."""
    if new not in ALLOWED_TRANSITIONS.get(OrderStatus(current), frozenset()):
        raise InvariantViolation(f"Transition interdite {OrderStatus(current).value} -> {OrderStatus(new).value}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_bag_tag(order_id: str, position: int) -> str:
    """
    Étiquette de bagage déterministe: B2G-<12 hex de l'id commande>-<position sur 2 chiffres>.
    - Unique dans la commande (position), stable pour un même couple (order_id, position).
    """
    prefix = uuid.UUID(str(order_id)).hex[:12].upper()
    return f"B2G-{prefix}-{position:02d}"


class Bag(BaseModel):
    id: str
    order_id: str
    tag_number: str
    weight_kg: float = 0.0
    position: int = 1


class Order(BaseModel):
    id: str
    user_id: Optional[str] = None
    first_name: str
    last_name: str
    email: str
    phone: str
    pickup_address: str
    pickup_time: datetime
    airline_code: str
    flight_number: str
    flight_date: date
    haz_items: bool = False
    declarations: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    payment_ref: Optional[str] = None
    notifier_message_id: Optional[str] = None
    notify_attempts: int = 0
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    bags: List[Bag] = Field(default_factory=list)

    @property
    def passenger_reference(self) -> str:
        return f"{self.last_name.strip().upper()}/{self.first_name.strip().upper()}"

    @property
    def is_notified(self) -> bool:
        return bool(self.notifier_message_id)


_AIRLINE_RE = re.compile(r"^[A-Z0-9]{2,3}$")
_FLIGHT_RE = re.compile(r"^[A-Z0-9]{0,3}\d{1,4}[A-Z]?$")
_PHONE_RE = re.compile(r"^\+?[0-9 ().\-]{5,32}$")


class BookingRequest(BaseModel):
    """
    Payload de réservation.
    - Champs snake_case ou camelCase (firstName, pickupAddress, hazItems...).
    - flight_date absent: dérivé de la date de pickup (comportement historique).
    - pickup_time naïf: interprété en UTC.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    phone: str
    pickup_address: str = Field(min_length=5, max_length=300)
    pickup_time: datetime
    airline: str
    flight_number: str
    flight_date: Optional[date] = None
    bags: int = Field(ge=1)
    haz_items: bool = False
    declarations: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("airline")
    @classmethod
    def _airline_code(cls, v: str) -> str:
        code = v.upper()
        if not _AIRLINE_RE.match(code):
            raise ValueError("Code compagnie invalide (2 ou 3 caractères alphanumériques)")
        return code

    @field_validator("flight_number")
    @classmethod
    def _flight_number(cls, v: str) -> str:
        number = v.replace(" ", "").upper()
        if not _FLIGHT_RE.match(number):
            raise ValueError("Numéro de vol invalide")
        return number

    @field_validator("phone")
    @classmethod
    def _phone(cls, v: str) -> str:
        if not _PHONE_RE.match(v):
            raise ValueError("Numéro de téléphone invalide")
        return v

    @field_validator("pickup_time")
    @classmethod
    def _pickup_time_utc(cls, v: datetime) -> datetime:
        return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v

    @model_validator(mode="after")
    def _default_flight_date(self) -> "BookingRequest":
        if self.flight_date is None:
            self.flight_date = self.pickup_time.date()
        return self


_REQUIRED_DETAILS = ("first_name", "last_name", "email", "phone", "pickup_address", "airline", "flight_number")


def ensure_order_details(details: BookingRequest, bag_count: int) -> None:
    """Contrôle minimal côté store (défense si l'appelant n'a pas validé le payload)."""
    errors: List[Dict[str, str]] = []
    if not isinstance(bag_count, int) or bag_count < 1:
        errors.append({"field": "bags", "message": "Au moins un bagage est requis"})
    for name in _REQUIRED_DETAILS:
        if not str(getattr(details, name, "") or "").strip():
            errors.append({"field": name, "message": "Champ requis"})
    if getattr(details, "pickup_time", None) is None:
        errors.append({"field": "pickup_time", "message": "Champ requis"})
    if errors:
        raise ValidationError(errors)


def new_order(details: BookingRequest, bag_count: int, user_id: Optional[str] = None) -> Order:
    """Construit une commande PENDING et ses bagages (ids et étiquettes générés)."""
    ensure_order_details(details, bag_count)
    order_id = str(uuid.uuid4())
    now = utcnow()
    bags = [
        Bag(
            id=str(uuid.uuid4()),
            order_id=order_id,
            tag_number=make_bag_tag(order_id, position),
            weight_kg=0.0,
            position=position,
        )
        for position in range(1, bag_count + 1)
    ]
    return Order(
        id=order_id,
        user_id=user_id,
        first_name=details.first_name,
        last_name=details.last_name,
        email=str(details.email),
        phone=details.phone,
        pickup_address=details.pickup_address,
        pickup_time=details.pickup_time,
        airline_code=details.airline,
        flight_number=details.flight_number,
        flight_date=details.flight_date or details.pickup_time.date(),
        haz_items=details.haz_items,
        declarations=details.declarations,
        status=OrderStatus.PENDING,
        created_at=now,
        updated_at=now,
        bags=bags,
    )


def is_valid_order_id(order_id: Any) -> bool:
    try:
        uuid.UUID(str(order_id))
        return True
    except (ValueError, TypeError, AttributeError):
        return False
