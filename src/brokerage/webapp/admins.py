"""Back-office accounts: admin login, creation and password changes."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional

from sqlmodel import Session, select

from ..exceptions import AuthenticationError, ConflictError, PermissionDenied, RateLimitedError, ValidationError
from ..models import AdminActor, AdminRole, AuditAction, coerce_enum
from ..security import AuthManager, hash_password, verify_password
from ..validation import clean, require_email
from .audit import record_audit, security_log
from .config import LOGIN_LOCKOUT_MINUTES, LOGIN_MAX_ATTEMPTS
from .persistence import Admin, get_or_404

logger = logging.getLogger(__name__)

admin_auth = AuthManager(max_attempts=LOGIN_MAX_ATTEMPTS, lockout_minutes=LOGIN_LOCKOUT_MINUTES)


def actor_for(admin: Admin, *, ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> AdminActor:
    role = coerce_enum(AdminRole, admin.role) or AdminRole.ADMIN
    return AdminActor(id=admin.id, email=admin.email, role=role, ip_address=ip_address, user_agent=user_agent)


def require_super_admin(actor: AdminActor) -> None:
    if not actor.is_super_admin:
        raise PermissionDenied("Super admin access required")


def authenticate_admin(
    session: Session,
    email: Any,
    password: Any,
    *,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Admin:
    identity = f"admin:{clean(email).lower()}"
    if admin_auth.is_locked(identity):
        security_log.log("admin_login_locked", email=clean(email).lower(), ip=ip_address)
        raise RateLimitedError("Too many login attempts. Please try again later.")
    admin = session.exec(select(Admin).where(Admin.email == clean(email).lower())).first()
    if admin is None or not verify_password(str(password or ""), admin.password_hash):
        allowed = admin_auth.record_login_attempt(identity, success=False)
        security_log.log("admin_login_failed", email=clean(email).lower(), ip=ip_address)
        if not allowed:
            raise RateLimitedError("Too many login attempts. Please try again later.")
        raise AuthenticationError("Invalid email or password")
    admin_auth.record_login_attempt(identity, success=True)
    admin.last_login = datetime.utcnow()
    session.add(admin)
    session.commit()
    security_log.log("admin_login", admin_id=admin.id, ip=ip_address)
    record_audit(
        actor_for(admin, ip_address=ip_address, user_agent=user_agent),
        AuditAction.ADMIN_LOGIN,
        "Admin",
        admin.id,
    )
    return admin


def create_admin(
    session: Session,
    *,
    email: Any,
    password: Any,
    name: Any = "Admin",
    role: Any = AdminRole.SUPER_ADMIN,
    actor: Optional[AdminActor] = None,
) -> Admin:
    """Create a back-office account; ``actor`` is set when another admin creates it."""

    if actor is not None:
        require_super_admin(actor)

    address = require_email(email)
    role_value = coerce_enum(AdminRole, role)
    if role_value is None:
        raise ValidationError("Invalid role. Must be SUPER_ADMIN or ADMIN")
    if len(str(password or "")) < 8:
        raise ValidationError("Password must be at least 8 characters")
    if session.exec(select(Admin).where(Admin.email == address)).first() is not None:
        raise ConflictError(f'Admin with email "{address}" already exists')
    admin = Admin(
        email=address,
        password_hash=hash_password(str(password)),
        name=clean(name) or "Admin",
        role=role_value.value,
    )
    session.add(admin)
    session.commit()
    session.refresh(admin)
    logger.info("Created %s account %s", role_value.value, address)
    if actor is not None:
        record_audit(actor, AuditAction.ADMIN_CREATED, "Admin", admin.id, {"email": address, "role": role_value.value})
    return admin


def change_admin_password(
    session: Session, actor: AdminActor, current_password: Any, new_password: Any, confirm_password: Any
) -> None:
    current = str(current_password or "")
    new = str(new_password or "")
    confirm = str(confirm_password or "")
    if not current or not new or not confirm:
        raise ValidationError("All fields are required")
    if new != confirm:
        raise ValidationError("New passwords do not match")
    if len(new) < 8:
        raise ValidationError("Password must be at least 8 characters")
    admin = get_or_404(session, Admin, actor.id, "Admin not found")
    if not verify_password(current, admin.password_hash):
        raise AuthenticationError("Current password is incorrect")
    admin.password_hash = hash_password(new)
    admin.updated_at = datetime.utcnow()
    session.add(admin)
    session.commit()
    security_log.log("admin_password_changed", admin_id=admin.id)
    record_audit(actor, AuditAction.ADMIN_PASSWORD_CHANGED, "Admin", admin.id, {"action": "password_changed"})


def list_admins(session: Session) -> List[Admin]:
    return list(session.exec(select(Admin).order_by(Admin.created_at)).all())


__all__ = [
    "admin_auth",
    "actor_for",
    "require_super_admin",
    "authenticate_admin",
    "create_admin",
    "change_admin_password",
    "list_admins",
]
