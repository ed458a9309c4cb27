from __future__ import annotations

import math
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import desc, func, select, update
from sqlalchemy.orm import Session

from db.models import Notification
from portfolios.context import Actor
from portfolios.errors import NotFoundError


def _owned(session: Session, actor: Actor, notification_id: UUID) -> Notification:
    notification = session.get(Notification, notification_id)
    if notification is None or notification.user_id != actor.user_id:
        raise NotFoundError("notification_not_found")
    return notification


def unread_count(session: Session, actor: Actor) -> int:
    stmt = select(func.count()).select_from(Notification).where(
        Notification.user_id == actor.user_id,
        Notification.is_read.is_(False),
    )
    return int(session.execute(stmt).scalar_one())


def list_notifications(
    session: Session,
    actor: Actor,
    *,
    page: int = 1,
    limit: int = 20,
    unread_only: bool = False,
) -> dict:
    page = max(1, page)
    limit = max(1, min(limit, 100))
    base = select(Notification).where(Notification.user_id == actor.user_id)
    if unread_only:
        base = base.where(Notification.is_read.is_(False))

    total = int(session.execute(select(func.count()).select_from(base.subquery())).scalar_one())
    rows = (
        session.execute(
            base.order_by(desc(Notification.created_at), desc(Notification.id))
            .limit(limit)
            .offset((page - 1) * limit)
        )
        .scalars()
        .all()
    )
    return {
        "data": list(rows),
        "meta": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit) if total else 0,
            "unread_count": unread_count(session, actor),
        },
    }


def mark_read(session: Session, actor: Actor, notification_id: UUID) -> Notification:
    notification = _owned(session, actor, notification_id)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.now(UTC)
        session.add(notification)
        session.flush()
    return notification


def mark_all_read(session: Session, actor: Actor) -> int:
    result = session.execute(
        update(Notification)
        .where(Notification.user_id == actor.user_id, Notification.is_read.is_(False))
        .values(is_read=True, read_at=datetime.now(UTC))
        .execution_options(synchronize_session=False)
    )
    session.expire_all()
    return int(result.rowcount or 0)


def delete_notification(session: Session, actor: Actor, notification_id: UUID) -> None:
    notification = _owned(session, actor, notification_id)
    session.delete(notification)
    session.flush()
