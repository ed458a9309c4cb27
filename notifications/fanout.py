"""Derive notification rows from state transitions and social edges.

Fan-out never decides whether the triggering operation succeeds: each write
runs inside its own savepoint, and a failed write is logged and rolled back to
that savepoint while the caller's transaction carries on.
"""
from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models import Notification, UserAccount

from .events import FanoutEvent, FollowCreated, PortfolioLiked, PortfolioTransitioned

logger = logging.getLogger(__name__)

NEW_FOLLOWER = "new_follower"
CONTENT_LIKED = "content_liked"
CONTENT_APPROVED = "content_approved"
CONTENT_REJECTED = "content_rejected"

NOTIFICATION_TYPES = (NEW_FOLLOWER, CONTENT_LIKED, CONTENT_APPROVED, CONTENT_REJECTED)


def _display_name(session: Session, user_id: UUID) -> str:
    user = session.get(UserAccount, user_id)
    if user is None:
        return "Someone"
    return user.display_name or user.username


def _persist(session: Session, notification: Notification) -> None:
    session.add(notification)
    session.flush()


def _write(
    session: Session,
    *,
    recipient_id: UUID,
    type_: str,
    title: str,
    message: str | None,
    data: dict,
) -> Notification | None:
    notification = Notification(
        user_id=recipient_id,
        type=type_,
        title=title,
        message=message,
        data=data,
        is_read=False,
    )
    try:
        with session.begin_nested():
            _persist(session, notification)
    except SQLAlchemyError:
        logger.exception("notification write failed type=%s recipient=%s", type_, recipient_id)
        return None
    logger.info("notification type=%s recipient=%s", type_, recipient_id)
    return notification


def _on_transition(session: Session, event: PortfolioTransitioned) -> Notification | None:
    data = {
        "portfolio_id": str(event.portfolio_id),
        "slug": event.slug,
        "title": event.title,
    }
    if event.to_status == "published" and event.from_status == "pending_review":
        return _write(
            session,
            recipient_id=event.owner_id,
            type_=CONTENT_APPROVED,
            title="Portfolio approved",
            message=f'"{event.title}" is now published.',
            data=data,
        )
    if event.to_status == "rejected":
        data["note"] = event.note
        return _write(
            session,
            recipient_id=event.owner_id,
            type_=CONTENT_REJECTED,
            title="Portfolio needs changes",
            message=event.note,
            data=data,
        )
    return None


def _on_follow(session: Session, event: FollowCreated) -> Notification | None:
    name = _display_name(session, event.follower_id)
    return _write(
        session,
        recipient_id=event.followee_id,
        type_=NEW_FOLLOWER,
        title="New follower",
        message=f"{name} started following you.",
        data={"follower_id": str(event.follower_id)},
    )


def _on_like(session: Session, event: PortfolioLiked) -> Notification | None:
    if event.user_id == event.owner_id:
        return None
    name = _display_name(session, event.user_id)
    return _write(
        session,
        recipient_id=event.owner_id,
        type_=CONTENT_LIKED,
        title="New like",
        message=f'{name} liked "{event.title}".',
        data={
            "user_id": str(event.user_id),
            "portfolio_id": str(event.portfolio_id),
            "slug": event.slug,
        },
    )


def dispatch(session: Session, event: FanoutEvent) -> Notification | None:
    if isinstance(event, PortfolioTransitioned):
        return _on_transition(session, event)
    if isinstance(event, FollowCreated):
        return _on_follow(session, event)
    if isinstance(event, PortfolioLiked):
        return _on_like(session, event)
    raise TypeError(f"unsupported fan-out event: {type(event).__name__}")
