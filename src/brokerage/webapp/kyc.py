"""Identity verification submissions and their review."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlmodel import Session, desc, func, select

from ..exceptions import AlreadyProcessedError, ConflictError, ValidationError
from ..models import AdminActor, AuditAction, KYCDocumentType, KYCStatus, Page, coerce_enum
from ..validation import clean, optional_text, require_url
from .audit import record_audit
from .mailer import send_email, templates
from .persistence import KYC, User, get_or_404, page_bounds

logger = logging.getLogger(__name__)


def get_user_kyc(session: Session, user_id: int) -> Optional[KYC]:
    return session.exec(select(KYC).where(KYC.user_id == user_id)).first()


def display_status(kyc: Optional[KYC]) -> str:
    """Status as shown to the account holder: verified, pending, rejected or none."""

    if kyc is None:
        return "none"
    status = coerce_enum(KYCStatus, kyc.status)
    return status.display if status else "none"


def submit_kyc(
    session: Session,
    user_id: int,
    *,
    document_type: Any,
    front_url: Any,
    back_url: Any = None,
    selfie_url: Any,
) -> KYC:
    doc_type = coerce_enum(KYCDocumentType, document_type)
    if doc_type is None:
        raise ValidationError("Invalid document type")
    front = require_url(front_url, "Document front image is required")
    selfie = require_url(selfie_url, "Selfie image is required")
    back: Optional[str] = None
    if doc_type.requires_back or optional_text(back_url):
        back = require_url(back_url, "Document back image is required")

    user = get_or_404(session, User, user_id, "User not found")
    existing = get_user_kyc(session, user_id)
    if existing is not None:
        if existing.status == KYCStatus.APPROVED.value:
            raise ConflictError("Your KYC has already been approved")
        if existing.status == KYCStatus.PENDING.value:
            raise ConflictError("You already have a pending KYC application")
        # a declined application is replaced by the new one
        session.delete(existing)
        session.flush()

    kyc = KYC(
        user_id=user.id,
        document_type=doc_type.value,
        document_front_url=front,
        document_back_url=back,
        selfie_url=selfie,
        status=KYCStatus.PENDING.value,
    )
    session.add(kyc)
    session.commit()
    session.refresh(kyc)
    logger.info("KYC %s submitted by user %s", kyc.id, user.id)
    send_email(user.email, templates.kyc_submitted(user.full_name))
    return kyc


resubmit_kyc = submit_kyc


def review_kyc(
    session: Session, actor: AdminActor, kyc_id: int, status: Any, rejection_reason: Any = None
) -> KYC:
    decision = coerce_enum(KYCStatus, status)
    if decision not in (KYCStatus.APPROVED, KYCStatus.DECLINED):
        raise ValidationError("Status must be APPROVED or DECLINED")
    reason = optional_text(rejection_reason)
    if decision is KYCStatus.DECLINED and not reason:
        raise ValidationError("A reason is required when declining KYC")
    kyc = get_or_404(session, KYC, kyc_id, "KYC submission not found")
    if kyc.status != KYCStatus.PENDING.value:
        raise AlreadyProcessedError("KYC has already been reviewed")
    user = get_or_404(session, User, kyc.user_id, "User not found")
    now = datetime.utcnow()
    kyc.status = decision.value
    kyc.rejection_reason = reason if decision is KYCStatus.DECLINED else None
    kyc.reviewed_at = now
    kyc.reviewed_by_id = actor.id
    kyc.updated_at = now
    session.add(kyc)
    session.commit()
    send_email(user.email, templates.kyc_result(user.full_name, decision is KYCStatus.APPROVED, kyc.rejection_reason))
    record_audit(
        actor,
        AuditAction.KYC_APPROVED if decision is KYCStatus.APPROVED else AuditAction.KYC_DECLINED,
        "KYC",
        kyc.id,
        {"userId": user.id, "status": decision.value, "rejectionReason": kyc.rejection_reason},
    )
    return kyc


def list_kyc(
    session: Session, *, status: Any = None, page: Any = 1, limit: Any = 20
) -> Page[Tuple[KYC, Optional[User]]]:
    page_i, limit_i = page_bounds(page, limit)
    wanted = coerce_enum(KYCStatus, status) if clean(status) else None
    count_query = select(func.count()).select_from(KYC)
    query = select(KYC, User).join(User, User.id == KYC.user_id, isouter=True)
    if wanted is not None:
        count_query = count_query.where(KYC.status == wanted.value)
        query = query.where(KYC.status == wanted.value)
    total = session.exec(count_query).one()
    rows = session.exec(
        query.order_by(desc(KYC.created_at), desc(KYC.id)).offset((page_i - 1) * limit_i).limit(limit_i)
    ).all()
    return Page(items=[(kyc, user) for kyc, user in rows], page=page_i, limit=limit_i, total=int(total))


def kyc_detail(session: Session, kyc_id: int) -> Tuple[KYC, Optional[User]]:
    kyc = get_or_404(session, KYC, kyc_id, "KYC submission not found")
    return kyc, session.get(User, kyc.user_id)


def pending_kyc_count(session: Session) -> int:
    return int(
        session.exec(select(func.count()).select_from(KYC).where(KYC.status == KYCStatus.PENDING.value)).one()
    )


def kyc_stats(session: Session) -> Dict[str, int]:
    rows: List[Any] = session.exec(select(KYC.status, func.count()).group_by(KYC.status)).all()
    counts = {status: int(count) for status, count in rows}
    stats = {
        "pending": counts.get(KYCStatus.PENDING.value, 0),
        "approved": counts.get(KYCStatus.APPROVED.value, 0),
        "declined": counts.get(KYCStatus.DECLINED.value, 0),
    }
    stats["total"] = sum(stats.values())
    return stats


__all__ = [
    "get_user_kyc",
    "display_status",
    "submit_kyc",
    "resubmit_kyc",
    "review_kyc",
    "list_kyc",
    "kyc_detail",
    "pending_kyc_count",
    "kyc_stats",
]
