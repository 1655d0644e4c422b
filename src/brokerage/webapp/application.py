"""FastAPI application wiring for the brokerage web frontend."""
from __future__ import annotations

import logging
from datetime import datetime

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.middleware.sessions import SessionMiddleware

from ..ops import HealthMonitor, configure_logging
from . import admin_routes, api_routes, public_routes, user_routes
from .config import LOG_LEVEL, SESSION_SECRET, SITE_NAME
from .errors import register_error_handlers
from .persistence import APPLIED_MIGRATIONS, MetaDAO, engine
from .settings import load_site_name
from .swap import price_feed

configure_logging(LOG_LEVEL)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# FastAPI application setup
# ---------------------------------------------------------------------------
app = FastAPI(title=SITE_NAME)
app.add_middleware(
    SessionMiddleware,
    secret_key=SESSION_SECRET,
    same_site="lax",
    max_age=None,
)
register_error_handlers(app)

app.include_router(public_routes.router)
app.include_router(user_routes.router)
app.include_router(admin_routes.router)
app.include_router(api_routes.router)

health = HealthMonitor()
for _migration in APPLIED_MIGRATIONS:
    health.add_migration(_migration)

with Session(engine) as _session:
    MetaDAO.set(_session, "schema_checked_at", datetime.utcnow().isoformat())
    if APPLIED_MIGRATIONS:
        MetaDAO.set(_session, "last_migrations", ",".join(APPLIED_MIGRATIONS))
    _session.commit()
    load_site_name(_session)

if APPLIED_MIGRATIONS:
    logger.info("Applied schema migrations: %s", ", ".join(APPLIED_MIGRATIONS))


@app.get("/healthz")
def healthz() -> dict:
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        with Session(engine) as session:
            checked_at = MetaDAO.get(session, "schema_checked_at")
        health.database_online = True
    except SQLAlchemyError:
        logger.exception("Health check could not reach the database")
        health.database_online = False
        checked_at = None
    health.set_price_timestamp(price_feed.last_btc_fetch())
    return {**health.status(), "schema_checked_at": checked_at}


__all__ = ["app", "health"]
