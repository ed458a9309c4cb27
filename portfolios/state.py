"""Portfolio moderation lifecycle.

    draft -> pending_review -> published -> archived -> draft
                            -> rejected -> pending_review

Status is only ever written here. Each transition has a single authorization
predicate that is evaluated once, on entry, before any precondition or effect.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Callable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models import AuditEvent, ContentBlock, Portfolio
from notifications import PortfolioTransitioned, dispatch

from .context import Actor
from .errors import ConflictError, ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class PortfolioStatus(str, Enum):
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    REJECTED = "rejected"
    PUBLISHED = "published"
    ARCHIVED = "archived"


EDITABLE_STATUSES = frozenset({PortfolioStatus.DRAFT.value, PortfolioStatus.REJECTED.value})


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _is_owner(actor: Actor, portfolio: Portfolio) -> bool:
    return actor.owns(portfolio.user_id)


def _is_admin(actor: Actor, portfolio: Portfolio) -> bool:
    return actor.is_admin


def _is_owner_or_admin(actor: Actor, portfolio: Portfolio) -> bool:
    return actor.is_admin or actor.owns(portfolio.user_id)


@dataclass(frozen=True)
class Transition:
    name: str
    sources: frozenset[str]
    target: str
    allowed: Callable[[Actor, Portfolio], bool]


TRANSITIONS: dict[str, Transition] = {
    "submit": Transition(
        "submit",
        frozenset({PortfolioStatus.DRAFT.value, PortfolioStatus.REJECTED.value}),
        PortfolioStatus.PENDING_REVIEW.value,
        _is_owner,
    ),
    "approve": Transition(
        "approve",
        frozenset({PortfolioStatus.PENDING_REVIEW.value}),
        PortfolioStatus.PUBLISHED.value,
        _is_admin,
    ),
    "reject": Transition(
        "reject",
        frozenset({PortfolioStatus.PENDING_REVIEW.value}),
        PortfolioStatus.REJECTED.value,
        _is_admin,
    ),
    "archive": Transition(
        "archive",
        frozenset({PortfolioStatus.PUBLISHED.value}),
        PortfolioStatus.ARCHIVED.value,
        _is_owner_or_admin,
    ),
    "unarchive": Transition(
        "unarchive",
        frozenset({PortfolioStatus.ARCHIVED.value}),
        PortfolioStatus.DRAFT.value,
        _is_owner,
    ),
}


def is_visible_to(actor: Actor | None, portfolio: Portfolio) -> bool:
    if portfolio.status == PortfolioStatus.PUBLISHED.value:
        return True
    if actor is None:
        return False
    return actor.is_admin or actor.owns(portfolio.user_id)


def load_portfolio(session: Session, portfolio_id: UUID, *, lock: bool = False) -> Portfolio:
    stmt = select(Portfolio).where(Portfolio.id == portfolio_id)
    if lock:
        stmt = stmt.with_for_update()
    portfolio = session.execute(stmt).scalar_one_or_none()
    if portfolio is None:
        raise NotFoundError("portfolio_not_found")
    return portfolio


def ensure_can_edit(actor: Actor, portfolio: Portfolio) -> None:
    """Capability check run before any content mutation of a portfolio."""
    if not _is_owner_or_admin(actor, portfolio):
        if is_visible_to(actor, portfolio):
            raise ForbiddenError("not_portfolio_owner")
        raise NotFoundError("portfolio_not_found")
    if portfolio.status not in EDITABLE_STATUSES:
        raise ForbiddenError(
            "portfolio_locked",
            f"portfolio cannot be edited while {portfolio.status}",
        )


def load_editable(session: Session, actor: Actor, portfolio_id: UUID) -> Portfolio:
    portfolio = load_portfolio(session, portfolio_id, lock=True)
    ensure_can_edit(actor, portfolio)
    return portfolio


def touch(portfolio: Portfolio, now: datetime | None = None) -> None:
    portfolio.updated_at = now or _utc_now()
    portfolio.revision = (portfolio.revision or 0) + 1


def _block_count(session: Session, portfolio_id: UUID) -> int:
    stmt = select(func.count()).select_from(ContentBlock).where(ContentBlock.portfolio_id == portfolio_id)
    return int(session.execute(stmt).scalar_one())


def _apply(
    session: Session,
    actor: Actor,
    name: str,
    portfolio_id: UUID,
    *,
    note: str | None = None,
) -> Portfolio:
    transition = TRANSITIONS[name]
    portfolio = load_portfolio(session, portfolio_id, lock=True)
    if not is_visible_to(actor, portfolio):
        raise NotFoundError("portfolio_not_found")
    if not transition.allowed(actor, portfolio):
        raise ForbiddenError(f"{name}_not_allowed")
    if portfolio.status not in transition.sources:
        raise ConflictError(
            "invalid_transition",
            f"cannot {name} a portfolio in status {portfolio.status}",
        )

    if name == "submit" and _block_count(session, portfolio.id) == 0:
        raise ValidationError("portfolio_empty", "add at least one block before submitting")
    if name == "reject":
        note = (note or "").strip()
        if not note:
            raise ValidationError("review_note_required")

    now = _utc_now()
    from_status = portfolio.status
    portfolio.status = transition.target

    if name == "submit":
        portfolio.admin_review_note = None
        portfolio.submitted_at = now
    elif name == "approve":
        portfolio.published_at = now
        portfolio.reviewed_by = actor.user_id
        portfolio.reviewed_at = now
    elif name == "reject":
        portfolio.admin_review_note = note
        portfolio.reviewed_by = actor.user_id
        portfolio.reviewed_at = now
    elif name == "archive":
        portfolio.archived_at = now
    elif name == "unarchive":
        portfolio.archived_at = None

    touch(portfolio, now)
    session.add(portfolio)
    session.add(
        AuditEvent(
            event_type="portfolio_transition",
            source="ui",
            actor_user_id=actor.user_id,
            occurred_at=now,
            payload={
                "portfolio_id": str(portfolio.id),
                "transition": name,
                "from": from_status,
                "to": portfolio.status,
                "note": note if name == "reject" else None,
            },
        )
    )
    session.flush()
    logger.info(
        "portfolio %s %s: %s -> %s by %s",
        portfolio.id,
        name,
        from_status,
        portfolio.status,
        actor.user_id,
    )

    dispatch(
        session,
        PortfolioTransitioned(
            portfolio_id=portfolio.id,
            owner_id=portfolio.user_id,
            title=portfolio.title,
            slug=portfolio.slug,
            from_status=from_status,
            to_status=portfolio.status,
            actor_id=actor.user_id,
            note=portfolio.admin_review_note,
        ),
    )
    return portfolio


def submit(session: Session, actor: Actor, portfolio_id: UUID) -> Portfolio:
    return _apply(session, actor, "submit", portfolio_id)


def approve(session: Session, actor: Actor, portfolio_id: UUID) -> Portfolio:
    return _apply(session, actor, "approve", portfolio_id)


def reject(session: Session, actor: Actor, portfolio_id: UUID, note: str | None) -> Portfolio:
    return _apply(session, actor, "reject", portfolio_id, note=note)


def archive(session: Session, actor: Actor, portfolio_id: UUID) -> Portfolio:
    return _apply(session, actor, "archive", portfolio_id)


def unarchive(session: Session, actor: Actor, portfolio_id: UUID) -> Portfolio:
    return _apply(session, actor, "unarchive", portfolio_id)
