import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from bag2go.fulfillment.dependencies import get_workflow
from bag2go.fulfillment.workflow import FulfillmentWorkflow

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])

# module bag2go.payments.views
@router.post("/webhook", include_in_schema=False)
async def webhook_stripe(request: Request, workflow: FulfillmentWorkflow = Depends(get_workflow)):
    """
    Webhook Stripe (Checkout): confirme le paiement puis envoie le manifeste.
    - Signature: vérifiée sur le corps brut (Stripe-Signature + STRIPE_WEBHOOK_SECRET) avant tout accès au store
    - Réponses: {"received": true} quel que soit le résultat du manifeste (les relances sont internes)
    - Erreurs: 400 si signature/payload invalide (SignatureError, voir app_setup.exceptions)
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    outcome = await run_in_threadpool(workflow.handle_payment_event, payload, signature)
    logger.info("payments.webhook outcome=%s order_id=%s", outcome.status, outcome.order_id)
    return JSONResponse({"received": True})
