# module bag2go.orders.views

"""Historique des commandes de l'utilisateur connecté.
- GET /api/v1/orders: toutes ses commandes (statut, bagages, notified).
- GET /api/v1/orders/{order_id}: détail (page résumé après paiement), propriétaire ou admin.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from bag2go.fulfillment.dependencies import get_workflow
from bag2go.fulfillment.workflow import FulfillmentWorkflow
from bag2go.orders import service as orders_service
from bag2go.utils.security import require_user

router = APIRouter(prefix="/api/v1/orders", tags=["Orders API"])


@router.get("")
async def list_my_orders(
    user: dict = Depends(require_user),
    workflow: FulfillmentWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    items = await run_in_threadpool(orders_service.get_user_orders, workflow.store, user.get("id"))
    return {"items": items}


@router.get("/{order_id}")
async def get_my_order(
    order_id: str,
    user: dict = Depends(require_user),
    workflow: FulfillmentWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    return await run_in_threadpool(orders_service.get_order_for_user, workflow.store, order_id, user)
