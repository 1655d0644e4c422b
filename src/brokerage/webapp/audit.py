"""Admin audit trail and the security event log."""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, desc, func, select

from ..models import AdminActor, AuditAction, Page
from ..ops import StructuredLogger
from .config import EVENT_LOG_PATH
from .persistence import AuditLog, decode_json, encode_json, engine, page_bounds

logger = logging.getLogger(__name__)

security_log = StructuredLogger(path=EVENT_LOG_PATH, logger_name="brokerage.security")


def record_audit(
    actor: AdminActor,
    action: AuditAction,
    entity_type: str,
    entity_id: Any = None,
    details: Optional[Mapping[str, Any]] = None,
) -> Optional[AuditLog]:
    """Store an audit entry in its own session; failures never propagate."""

    entry = AuditLog(
        admin_id=actor.id,
        action=action.value,
        entity_type=entity_type,
        entity_id=None if entity_id is None else str(entity_id),
        details=encode_json(dict(details)) if details else None,
        ip_address=actor.ip_address,
        user_agent=actor.user_agent,
    )
    try:
        with Session(engine) as session:
            session.add(entry)
            session.commit()
            session.refresh(entry)
    except SQLAlchemyError as exc:
        logger.warning("Failed to write audit entry %s for %s %s: %s", action.value, entity_type, entity_id, exc)
        return None
    return entry


def list_audit_logs(session: Session, *, action: Optional[str] = None, page: Any = 1, limit: Any = 50) -> Page[AuditLog]:
    page, limit = page_bounds(page, limit)
    query = select(AuditLog)
    count_query = select(func.count()).select_from(AuditLog)
    if action:
        query = query.where(AuditLog.action == action)
        count_query = count_query.where(AuditLog.action == action)
    total = session.exec(count_query).one()
    rows = session.exec(
        query.order_by(desc(AuditLog.created_at), desc(AuditLog.id)).offset((page - 1) * limit).limit(limit)
    ).all()
    return Page(items=list(rows), page=page, limit=limit, total=int(total))


def audit_details(entry: AuditLog) -> dict:
    return decode_json(entry.details, {})


__all__ = ["record_audit", "list_audit_logs", "audit_details", "security_log"]
