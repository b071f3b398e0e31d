from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func as sa_func

from services.rbac import DEFAULT_ROLE, is_valid_role
from shared.auth_context import Actor, AuthorizationError, Identity
from shared.db import User, UserRole

logger = logging.getLogger(__name__)


def _normalize_email(value: Any) -> str:
    return str(value or "").strip().lower()


def _find_assignment(db, user_id: Any) -> Optional[UserRole]:
    return db.query(UserRole).filter_by(user_id=str(user_id)).one_or_none()


def _role_for(db, user_id: Any) -> Optional[str]:
    assignment = _find_assignment(db, user_id)
    return assignment.role if assignment else None


def _upsert_assignment(db, user_id: Any, role: str) -> UserRole:
    assignment = _find_assignment(db, user_id)
    if assignment:
        assignment.role = role
        assignment.updated_at = datetime.utcnow()
        return assignment
    assignment = UserRole(user_id=str(user_id), role=role)
    db.add(assignment)
    db.flush()
    return assignment


def _require_admin(db, actor: Actor, message: str) -> None:
    if _role_for(db, actor.user_id) != "admin":
        logger.warning("Admin check failed for user_id=%s: %s", actor.user_id, message)
        raise AuthorizationError(message)


def user_to_dict(user: User, role: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": str(user.id),
        "firstName": user.first_name,
        "lastName": user.last_name,
        "email": user.email,
        "phone": user.phone,
        "status": user.status,
        "imageUrl": user.image_url,
        "role": role or DEFAULT_ROLE,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
        "updatedAt": user.updated_at.isoformat() if user.updated_at else None,
    }


def get_user_role(db, actor: Optional[Actor]) -> Optional[str]:
    """Role of the calling user, or None when signed out or unassigned."""
    if not actor:
        return None
    return _role_for(db, actor.user_id)


def get_user_role_by_id(db, actor: Actor, user_id: str) -> Optional[str]:
    _require_admin(db, actor, "Only admins can view user roles")
    return _role_for(db, user_id)


def set_user_role(db, actor: Actor, user_id: str, role: str) -> Dict[str, Any]:
    _require_admin(db, actor, "Only admins can set user roles")
    if not is_valid_role(role):
        raise ValueError(f"Invalid role: {role}")
    _upsert_assignment(db, user_id, role)
    db.commit()
    logger.info("Role for user_id=%s set to %s by %s", user_id, role, actor.user_id)
    return {"success": True}


def get_users(db, actor: Actor) -> List[Dict[str, Any]]:
    _require_admin(db, actor, "Only admins can view all users")
    role_map = {row.user_id: row.role for row in db.query(UserRole).all()}
    users = db.query(User).order_by(User.id.asc()).all()
    return [user_to_dict(user, role_map.get(str(user.id))) for user in users]


def invite_user(
    db,
    actor: Actor,
    *,
    first_name: str,
    last_name: str,
    email: str,
    role: str,
) -> Dict[str, Any]:
    _require_admin(db, actor, "Only admins can invite users")
    if not is_valid_role(role):
        raise ValueError(f"Invalid role: {role}")
    normalized = _normalize_email(email)
    if not normalized:
        raise ValueError("email is required")
    existing = db.query(User).filter(sa_func.lower(User.email) == normalized).first()
    if existing:
        raise ValueError("User with this email already exists")

    user = User(
        first_name=str(first_name or "").strip(),
        last_name=str(last_name or "").strip(),
        email=normalized,
        status="pending",
    )
    db.add(user)
    db.flush()
    _upsert_assignment(db, user.id, role)
    db.commit()
    logger.info("Invited %s as %s (user_id=%s)", normalized, role, user.id)
    return {"userId": str(user.id), "success": True}


def remove_user(db, actor: Actor, user_id: str) -> Dict[str, Any]:
    _require_admin(db, actor, "Only admins can remove users")
    if str(user_id) == str(actor.user_id):
        raise ValueError("You cannot remove yourself")

    assignment = _find_assignment(db, user_id)
    if assignment:
        db.delete(assignment)
    try:
        user = db.query(User).filter_by(id=int(user_id)).one_or_none()
    except ValueError:
        user = None
    if user:
        db.delete(user)
    else:
        logger.info("remove_user: no user row for user_id=%s", user_id)
    db.commit()
    return {"success": True}


def sync_user(
    db,
    identity: Identity,
    *,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    image_url: Optional[str] = None,
) -> Dict[str, Any]:
    """
    First sign-in handshake. Creates the local user for an identity-provider
    subject (or links a pending invite with the same email) and gives it the
    default role when it has none.
    """
    is_new = False
    email = str(identity.email or "").strip().lower()
    user = db.query(User).filter_by(external_id=identity.subject).one_or_none()
    if not user:
        user = db.query(User).filter(sa_func.lower(User.email) == email).first()
        if user and user.external_id:
            logger.warning(
                "Sync refused for subject=%s: email already linked to user_id=%s", identity.subject, user.id
            )
            raise ValueError("This email is already linked to another sign-in account")
        if user:
            user.external_id = identity.subject
            user.status = "active"
        else:
            user = User(
                first_name=str(first_name or "").strip(),
                last_name=str(last_name or "").strip(),
                email=email,
                external_id=identity.subject,
                status="active",
            )
            db.add(user)
            is_new = True
    if first_name:
        user.first_name = first_name.strip()
    if last_name:
        user.last_name = last_name.strip()
    if image_url:
        user.image_url = image_url
    db.flush()

    assignment = _find_assignment(db, user.id)
    if not assignment:
        assignment = _upsert_assignment(db, user.id, DEFAULT_ROLE)
    db.commit()
    if is_new:
        logger.info("Created user_id=%s for subject=%s", user.id, identity.subject)
    return {"userId": str(user.id), "isNew": is_new, "role": assignment.role}


def bootstrap_admin(db, actor: Actor) -> Dict[str, Any]:
    """Promote the caller to admin, allowed only while no admin exists."""
    if db.query(UserRole).filter_by(role="admin").first():
        raise AuthorizationError("An admin already exists; ask an admin to change roles")
    _upsert_assignment(db, actor.user_id, "admin")
    db.commit()
    logger.info("Bootstrapped user_id=%s as the first admin", actor.user_id)
    return {"success": True, "message": "You are now an admin"}
