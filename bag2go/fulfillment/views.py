# module bag2go.fulfillment.views

"""Endpoints du fulfillment.
- /api/v1/bookings/checkout: réservation + session de paiement (authentifié, rate-limité).
- /api/v1/admin/fulfillment/*: surface opérateur (liste par statut, relance, sweep).
Les appels au workflow (bloquants: Supabase, Stripe, SendGrid) passent par run_in_threadpool.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from bag2go.config import BASE_URL, CHECKOUT_CANCEL_PATH, CHECKOUT_SUCCESS_PATH
from bag2go.errors import ValidationError
from bag2go.fulfillment.dependencies import get_workflow
from bag2go.fulfillment.workflow import FulfillmentWorkflow
from bag2go.orders.models import OrderStatus
from bag2go.orders.service import to_admin_dict
from bag2go.utils.rate_limit import optional_rate_limit
from bag2go.utils.security import require_admin, require_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/bookings", tags=["Bookings API"])
admin_router = APIRouter(prefix="/api/v1/admin/fulfillment", tags=["Admin Fulfillment"])


def _checkout_urls() -> tuple:
    base = BASE_URL.rstrip("/")
    return f"{base}{CHECKOUT_SUCCESS_PATH}", f"{base}{CHECKOUT_CANCEL_PATH}"


@router.post("/checkout", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def create_booking_checkout(
    request: Request,
    user: dict = Depends(require_user),
    workflow: FulfillmentWorkflow = Depends(get_workflow),
):
    """
    Crée la commande (PENDING + bagages) puis la session Stripe Checkout.
    - Entrée JSON: {firstName, lastName, email, phone, pickupAddress, pickupTime,
      airline, flightNumber, flightDate?, bags, hazItems?, declarations?} (snake_case accepté)
    - 422 si le payload est invalide (liste des champs), 502 si la session n'a pas pu être créée.
    - Réponse: {"orderId", "sessionId", "url"} (le front redirige vers url).
    """
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationError([{"field": "body", "message": "JSON invalide"}])

    success_url, cancel_url = _checkout_urls()
    result = await run_in_threadpool(workflow.book, user.get("id"), payload, success_url, cancel_url)
    return JSONResponse({
        "orderId": result.order.id,
        "sessionId": result.session.id,
        "url": result.session.url,
    })


def _parse_statuses(raw: Optional[str]) -> List[OrderStatus]:
    if not raw:
        return [OrderStatus.NOTIFY_FAILED]
    statuses = []
    for part in raw.split(","):
        value = part.strip().upper()
        if not value:
            continue
        try:
            statuses.append(OrderStatus(value))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Statut inconnu: {value}")
    return statuses or [OrderStatus.NOTIFY_FAILED]


@admin_router.get("/orders")
async def admin_list_orders(
    status: Optional[str] = Query(default=None, description="Statuts séparés par des virgules"),
    limit: int = Query(default=100, ge=1, le=500),
    user: dict = Depends(require_admin),
    workflow: FulfillmentWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    statuses = _parse_statuses(status)
    orders = await run_in_threadpool(workflow.orders_by_status, statuses, limit)
    return {"items": [to_admin_dict(o) for o in orders]}


@admin_router.post("/orders/{order_id}/retry")
async def admin_retry_notification(
    order_id: str,
    user: dict = Depends(require_admin),
    workflow: FulfillmentWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    """Relance manuelle du manifeste (même garde que le webhook: jamais de double envoi)."""
    outcome = await run_in_threadpool(workflow.retry_notification, order_id)
    logger.info("admin.fulfillment retry order_id=%s by=%s outcome=%s", order_id, user.get("id"), outcome.status)
    return outcome.model_dump()


@admin_router.post("/sweep")
async def admin_run_sweep(
    limit: int = Query(default=50, ge=1, le=500),
    user: dict = Depends(require_admin),
    workflow: FulfillmentWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    return await run_in_threadpool(workflow.run_retry_sweep, limit)
