# routers/notifications.py - The caller's in-app notifications
# Rows are written by events.NotificationSink; this router only reads and
# acknowledges them, and never exposes another user's rows.
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from errors import NotFound
from models import Notification, NotificationType, utcnow

router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])


class NotificationOut(BaseModel):
    id: str
    notification_type: NotificationType
    title: str
    message: str
    link: Optional[str] = None
    is_read: bool
    read_at: Optional[str] = None
    created_at: str


def _notification_out(n: Notification) -> dict:
    return NotificationOut(
        id=n.id,
        notification_type=n.notification_type,
        title=n.title,
        message=n.message,
        link=n.link,
        is_read=n.read_at is not None,
        read_at=n.read_at.isoformat() if n.read_at else None,
        created_at=n.created_at.isoformat(),
    ).model_dump(mode="json")


async def _own_notification(db: AsyncSession, user: CurrentUser, notification_id: str) -> Notification:
    notification = (await db.execute(
        select(Notification).where(Notification.id == notification_id, Notification.user_id == user.id)
    )).scalar_one_or_none()
    if notification is None:
        raise NotFound("notification", notification_id)
    return notification


# ============================================================
# READ
# ============================================================

@router.get("")
async def list_notifications(
    unread_only: bool = Query(default=False),
    notification_type: Optional[NotificationType] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    """Newest first"""
    stmt = select(Notification).where(Notification.user_id == user.id)
    if unread_only:
        stmt = stmt.where(Notification.read_at.is_(None))
    if notification_type is not None:
        stmt = stmt.where(Notification.notification_type == notification_type)
    stmt = stmt.order_by(Notification.created_at.desc(), Notification.id).offset(offset).limit(limit)
    rows = (await db.execute(stmt)).scalars().all()
    return [_notification_out(n) for n in rows]


@router.get("/count")
async def unread_count(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    rows = (await db.execute(
        select(Notification.notification_type, func.count(Notification.id))
        .where(Notification.user_id == user.id, Notification.read_at.is_(None))
        .group_by(Notification.notification_type)
    )).all()
    by_type = {NotificationType(kind).value: count for kind, count in rows}
    return {"unread": sum(by_type.values()), "by_type": by_type}


# ============================================================
# ACKNOWLEDGE
# ============================================================

@router.post("/read-all")
async def mark_all_read(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user.id, Notification.read_at.is_(None))
        .values(read_at=utcnow())
    )
    await db.commit()
    return {"marked": result.rowcount}


@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    notification = await _own_notification(db, user, notification_id)
    if notification.read_at is None:
        notification.read_at = utcnow()
        await db.commit()
    return _notification_out(notification)


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    notification = await _own_notification(db, user, notification_id)
    await db.delete(notification)
    await db.commit()
    return {"status": "deleted", "id": notification_id}
