# routers/v1/notifications.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from database import get_db
from deps.auth import get_current_user
from errors import NotFoundError
from models import Notification, User
from schemas import NotificationOut
from utils.responses import ok

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _mine(user: User):
    # personal rows plus organization broadcasts (user_id NULL)
    return (
        Notification.organization_id == user.organization_id,
        or_(Notification.user_id == user.id, Notification.user_id.is_(None)),
    )


@router.get("")
def list_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    q = select(Notification).where(*_mine(user))
    if unread_only:
        q = q.where(Notification.is_read.is_(False))
    rows = db.execute(q.order_by(Notification.id.desc()).limit(limit)).scalars().all()
    unread = db.execute(
        select(func.count(Notification.id)).where(*_mine(user), Notification.is_read.is_(False))
    ).scalar_one()
    return ok({"notifications": [NotificationOut.model_validate(n) for n in rows], "unread_count": unread})


@router.patch("/read-all")
def read_all(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    res = db.execute(
        update(Notification)
        .where(*_mine(user), Notification.is_read.is_(False))
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return ok({"updated": res.rowcount})


@router.patch("/{notification_id}/read")
def mark_read(notification_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    n = db.get(Notification, notification_id)
    if not n or n.organization_id != user.organization_id or n.user_id not in (None, user.id):
        raise NotFoundError("Notification")
    n.is_read = True
    db.commit()
    db.refresh(n)
    return ok(NotificationOut.model_validate(n))
