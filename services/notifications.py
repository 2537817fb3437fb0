# services/notifications.py
"""
Notification sink. Rows are written with the caller's session *after* the
primary mutation has been committed; any failure is rolled back here and
logged, never raised.
"""
import logging
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import Notification, User

logger = logging.getLogger(__name__)


def notify_org(
    db: Session,
    org_id: int,
    type: str,
    title: str,
    message: str,
    payload: Optional[dict] = None,
    roles: Optional[Iterable[str]] = None,
) -> int:
    """Fan out to every active user of the organization (optionally by role)."""
    try:
        q = select(User.id).where(User.organization_id == org_id, User.is_active.is_(True))
        roles = list(roles or [])
        if roles:
            q = q.where(User.role.in_(roles))
        user_ids = db.execute(q).scalars().all()

        for uid in user_ids:
            db.add(Notification(
                organization_id=org_id,
                user_id=uid,
                type=type,
                title=title,
                message=message,
                data=payload or {},
            ))
        db.commit()
        return len(user_ids)
    except Exception:
        db.rollback()
        logger.warning("notify_org(%s, %s) failed", org_id, type, exc_info=True)
        return 0


def notify_user(
    db: Session,
    org_id: int,
    user_id: int,
    type: str,
    title: str,
    message: str,
    payload: Optional[dict] = None,
) -> bool:
    try:
        db.add(Notification(
            organization_id=org_id,
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data=payload or {},
        ))
        db.commit()
        return True
    except Exception:
        db.rollback()
        logger.warning("notify_user(%s, %s) failed", user_id, type, exc_info=True)
        return False
