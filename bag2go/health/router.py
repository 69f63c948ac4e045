import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from bag2go.config import APP_ENV, ORDER_STORE_BACKEND
from bag2go.fulfillment.dependencies import get_workflow
from bag2go.fulfillment.workflow import FulfillmentWorkflow
from bag2go.utils.rate_limit import rate_limit_health_info

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])

@router.get("/health")
def health_root():
    return {"ok": True}

@router.get("/healthz")
def healthz(request: Request):
    return {"ok": True, "env": APP_ENV, "rate_limit": rate_limit_health_info(request)}

@router.get("/health/store")
async def health_store(workflow: FulfillmentWorkflow = Depends(get_workflow)):
    """Joignabilité du store des commandes (503 si le ping échoue)."""
    try:
        ok = bool(await run_in_threadpool(workflow.store.ping))
    except Exception as e:
        logger.warning("health.store ping failed: %s", e)
        return JSONResponse({"ok": False, "backend": ORDER_STORE_BACKEND, "error": str(e)}, status_code=503)
    return JSONResponse({"ok": ok, "backend": ORDER_STORE_BACKEND}, status_code=200 if ok else 503)
