"""
Liveness / readiness probes (mounted at the root, outside /api).

Readiness covers the app database only. User MongoDB deployments are
per-tenant and optional, so they never make the service unready; the
optional TriboPay and VAPID configuration is reported as flags.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from keyforge.core.database import get_engine, metadata
from keyforge.features.billing.service import billing_enabled
from keyforge.features.notifications.service import vapid_configured

logger = logging.getLogger("keyforge")

root_router = APIRouter(tags=["health"])


def _not_ready(detail: str) -> JSONResponse:
    return JSONResponse(status_code=503, content={"status": "error", "detail": detail})


@root_router.get("/healthz")
def healthz():
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        inspector = inspect(engine)
        missing = [t for t in sorted(metadata.tables) if not inspector.has_table(t)]
    except SQLAlchemyError as e:
        logger.error("readyz.database_unreachable", extra={"error": type(e).__name__})
        return _not_ready("database unreachable")

    if missing:
        detail = f"missing tables: {', '.join(missing)}"
        logger.warning("readyz.missing_tables", extra={"tables": ",".join(missing)})
        return _not_ready(detail)

    return {"status": "ok", "billing": billing_enabled(), "push": vapid_configured()}
