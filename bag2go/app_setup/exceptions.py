"""
Gestionnaires d'exceptions utilisés par la factory.
- Erreurs métier (bag2go.errors) -> codes HTTP stables, body JSON {"detail": ...}.
- HTTPException: JSON FastAPI standard.
"""
import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from bag2go.errors import (
    BookingError,
    ConflictError,
    InvariantViolation,
    OrderNotFound,
    SignatureError,
    ValidationError,
)

logger = logging.getLogger(__name__)

def register_exception_handlers(app: FastAPI) -> None:
    """
    Mapping:
    - ValidationError -> 422 {"detail", "errors": [{field, message}]}
    - SignatureError -> 400 (Stripe réessaie, sans effet tant que la signature est fausse)
    - OrderNotFound -> 404
    - BookingError -> 502 (fournisseur de paiement indisponible, commande compensée)
    - ConflictError -> 409 (filet de sécurité: normalement traité par le workflow)
    - InvariantViolation -> 500 + log critique
    """
    @app.exception_handler(ValidationError)
    async def on_validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={"detail": exc.message, "errors": exc.fields})

    @app.exception_handler(SignatureError)
    async def on_signature_error(request: Request, exc: SignatureError):
        return JSONResponse(status_code=400, content={"detail": "Invalid Stripe webhook payload"})

    @app.exception_handler(OrderNotFound)
    async def on_order_not_found(request: Request, exc: OrderNotFound):
        return JSONResponse(status_code=404, content={"detail": "Commande introuvable"})

    @app.exception_handler(BookingError)
    async def on_booking_error(request: Request, exc: BookingError):
        return JSONResponse(status_code=502, content={"detail": str(exc), "orderId": exc.order_id})

    @app.exception_handler(ConflictError)
    async def on_conflict(request: Request, exc: ConflictError):
        logger.error("ConflictError remontée jusqu'à HTTP path=%s: %s", request.url.path, exc)
        return JSONResponse(status_code=409, content={"detail": "Conflit, réessayez"})

    @app.exception_handler(InvariantViolation)
    async def on_invariant_violation(request: Request, exc: InvariantViolation):
        logger.critical("InvariantViolation path=%s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": "Erreur interne"})

    @app.exception_handler(HTTPException)
    async def on_http_exception(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))
