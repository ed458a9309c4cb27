"""Admin view over portfolios awaiting a moderation decision."""
from __future__ import annotations

from uuid import UUID

from sqlalchemy import asc, func, select
from sqlalchemy.orm import Session

from db.models import Portfolio

from . import state
from .context import Actor
from .errors import ForbiddenError
from .state import PortfolioStatus


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise ForbiddenError("admin_required")


def _queue_stmt(search: str | None):
    stmt = select(Portfolio).where(Portfolio.status == PortfolioStatus.PENDING_REVIEW.value)
    if search:
        stmt = stmt.where(func.lower(Portfolio.title).contains(search.strip().lower()))
    return stmt


def list_queue(
    session: Session,
    actor: Actor,
    *,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Portfolio]:
    _require_admin(actor)
    stmt = (
        _queue_stmt(search)
        .order_by(asc(Portfolio.submitted_at), asc(Portfolio.id))
        .limit(limit)
        .offset(offset)
    )
    return list(session.execute(stmt).scalars().all())


def queue_size(session: Session, actor: Actor, *, search: str | None = None) -> int:
    _require_admin(actor)
    subquery = _queue_stmt(search).subquery()
    return int(session.execute(select(func.count()).select_from(subquery)).scalar_one())


def approve(session: Session, actor: Actor, portfolio_id: UUID) -> Portfolio:
    return state.approve(session, actor, portfolio_id)


def reject(session: Session, actor: Actor, portfolio_id: UUID, note: str | None) -> Portfolio:
    return state.reject(session, actor, portfolio_id, note)
