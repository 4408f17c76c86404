"""FastAPI application wiring for the users service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.routes import router as v1_router
from .config import Settings, get_settings
from .domain.ports import AccountStore, UniquenessIndex
from .domain.service import AccountLifecycleManager
from .domain.validator import AccountValidator
from .memory_store import InMemoryAccountStore
from .repository import AccountRepository
from .uniqueness.index import InMemoryUniquenessIndex

logger = logging.getLogger(__name__)

settings = get_settings()


def _build_index(settings: Settings) -> UniquenessIndex:
    """Instantiate the configured uniqueness index backend."""
    if settings.uniqueness_backend == "redis":
        import redis

        from .uniqueness.redis_index import RedisUniquenessIndex

        client = redis.from_url(settings.redis_url)
        # fail fast at startup rather than on the first create
        client.ping()
        logger.info("uniqueness index configured for redis backend at %s", settings.redis_url)
        return RedisUniquenessIndex(
            client, reservation_ttl_seconds=settings.reservation_ttl_seconds
        )

    logger.info("uniqueness index using in-memory backend")
    return InMemoryUniquenessIndex(reservation_ttl_seconds=settings.reservation_ttl_seconds)


def _build_validator(settings: Settings) -> AccountValidator:
    return AccountValidator(
        max_email_length=settings.max_email_length,
        max_name_length=settings.max_name_length,
        max_phone_length=settings.max_phone_length,
        casefold_keys=settings.casefold_keys,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (storage, index, lifecycle manager) for the app lifecycle."""
    logging.basicConfig(level=settings.log_level)
    pool = None
    store: AccountStore
    if settings.storage_backend == "postgres":
        pool = ConnectionPool(settings.database_url, open=False)
        pool.open()
        repository = AccountRepository(pool)
        repository.ensure_schema()
        store = repository
        logger.info("account store using postgres backend")
    else:
        store = InMemoryAccountStore()
        logger.info("account store using in-memory backend")

    app.state.account_manager = AccountLifecycleManager(
        store, _build_index(settings), _build_validator(settings)
    )
    try:
        yield
    finally:
        if pool is not None:
            pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics")
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(v1_router)
