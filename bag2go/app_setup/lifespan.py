"""
Lifespan FastAPI: initialisation/arrêt des ressources partagées.
- Initialise FastAPILimiter (Redis) avec options de test (fakeredis).
- Démarre la passe de relance du fulfillment si FULFILLMENT_RETRY_INTERVAL_SECONDS > 0.
- Variables d'environnement supportées:
  - DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS=1: désactive complètement (tests)
  - USE_FAKE_REDIS_FOR_TESTS=1: utilise fakeredis (tests)
  - LOCAL_RATE_LIMIT_FALLBACK=1: active un fallback local si l'init échoue
"""
import asyncio
import os
import logging
import redis.asyncio as redis
from contextlib import asynccontextmanager, suppress
from fastapi import FastAPI
from fastapi_limiter import FastAPILimiter

from bag2go.config import FULFILLMENT_RETRY_INTERVAL_SECONDS

logger = logging.getLogger("uvicorn.error")


async def _init_rate_limit(app: FastAPI) -> None:
    """
    Configure le rate limiting et gère les fallbacks.
    - En cas d'échec de Redis et sans fallback, le rate limiting est désactivé proprement.
    - Les logs indiquent l'état effectif (enabled/disabled) pour observabilité.
    """
    if os.getenv("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS") == "1":
        app.state.rate_limit_enabled = False
        logger.info("Rate limiting disabled by DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS")
        return
    try:
        if os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1":
            from fakeredis.aioredis import FakeRedis  # tests only
            r = FakeRedis(decode_responses=True)
        else:
            redis_url = os.getenv("RATE_LIMIT_REDIS_URL", "redis://127.0.0.1:6379/0")
            r = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)

        await FastAPILimiter.init(r)
        app.state.rate_limit_enabled = True
        logger.info("Rate limiting enabled")
    except Exception as e:
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            app.state.rate_limit_enabled = True
            logger.warning(f"Rate limiting falling back to local in-memory due to init error: {e}")
        else:
            app.state.rate_limit_enabled = False
            logger.warning(f"Rate limiting disabled due to init error: {e}")


async def _retry_sweep_loop(app: FastAPI, interval: int) -> None:
    """Relance périodique (thread de travail): manifestes en échec et commandes abandonnées."""
    from bag2go.fulfillment.dependencies import workflow_for_app
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(lambda: workflow_for_app(app).run_retry_sweep())
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Fulfillment retry sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await _init_rate_limit(app)

    sweep_task = None
    if FULFILLMENT_RETRY_INTERVAL_SECONDS > 0:
        sweep_task = asyncio.create_task(_retry_sweep_loop(app, FULFILLMENT_RETRY_INTERVAL_SECONDS))
        logger.info("Fulfillment retry sweep every %ss", FULFILLMENT_RETRY_INTERVAL_SECONDS)

    try:
        yield
    finally:
        if sweep_task is not None:
            sweep_task.cancel()
            with suppress(asyncio.CancelledError):
                await sweep_task
