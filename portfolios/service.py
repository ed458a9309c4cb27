from __future__ import annotations

import re
import unicodedata
from uuid import UUID

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

from db.models import Portfolio, UserAccount

from .context import Actor
from .errors import ForbiddenError, NotFoundError, ValidationError
from .state import (
    PortfolioStatus,
    _utc_now,
    is_visible_to,
    load_editable,
    load_portfolio,
    touch,
)

MAX_TITLE_LENGTH = 200


def slugify(title: str) -> str:
    normalized = unicodedata.normalize("NFKD", title).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")
    return slug[:80].strip("-") or "portfolio"


def _clean_title(title: str | None) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationError("title_required")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError("title_too_long", f"title must be at most {MAX_TITLE_LENGTH} characters")
    return title


def _unique_slug(session: Session, user_id: UUID, base: str) -> str:
    taken = set(
        session.execute(
            select(Portfolio.slug).where(
                Portfolio.user_id == user_id,
                Portfolio.slug.like(f"{base}%"),
            )
        ).scalars()
    )
    if base not in taken:
        return base
    suffix = 2
    while f"{base}-{suffix}" in taken:
        suffix += 1
    return f"{base}-{suffix}"


def create_portfolio(session: Session, actor: Actor, title: str) -> Portfolio:
    title = _clean_title(title)
    now = _utc_now()
    portfolio = Portfolio(
        user_id=actor.user_id,
        title=title,
        slug=_unique_slug(session, actor.user_id, slugify(title)),
        status=PortfolioStatus.DRAFT.value,
        like_count=0,
        revision=1,
        created_at=now,
        updated_at=now,
    )
    session.add(portfolio)
    session.flush()
    return portfolio


def get_portfolio(session: Session, actor: Actor | None, portfolio_id: UUID) -> Portfolio:
    portfolio = load_portfolio(session, portfolio_id)
    if not is_visible_to(actor, portfolio):
        raise NotFoundError("portfolio_not_found")
    return portfolio


def get_portfolio_by_slug(session: Session, actor: Actor | None, username: str, slug: str) -> Portfolio:
    portfolio = session.execute(
        select(Portfolio)
        .join(UserAccount, UserAccount.id == Portfolio.user_id)
        .where(UserAccount.username == username, Portfolio.slug == slug)
    ).scalar_one_or_none()
    if portfolio is None or not is_visible_to(actor, portfolio):
        raise NotFoundError("portfolio_not_found")
    return portfolio


def list_public_portfolios(
    session: Session,
    *,
    user_id: UUID | None = None,
    search: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[Portfolio]:
    stmt = select(Portfolio).where(Portfolio.status == PortfolioStatus.PUBLISHED.value)
    if user_id:
        stmt = stmt.where(Portfolio.user_id == user_id)
    if search:
        stmt = stmt.where(func.lower(Portfolio.title).contains(search.strip().lower()))
    stmt = stmt.order_by(desc(Portfolio.published_at), desc(Portfolio.id)).limit(limit).offset(offset)
    return list(session.execute(stmt).scalars().all())


def list_my_portfolios(
    session: Session,
    actor: Actor,
    *,
    status: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[Portfolio]:
    stmt = select(Portfolio).where(Portfolio.user_id == actor.user_id)
    if status:
        stmt = stmt.where(Portfolio.status == status)
    stmt = stmt.order_by(desc(Portfolio.updated_at), desc(Portfolio.id)).limit(limit).offset(offset)
    return list(session.execute(stmt).scalars().all())


def update_portfolio(session: Session, actor: Actor, portfolio_id: UUID, *, title: str | None = None) -> Portfolio:
    portfolio = load_editable(session, actor, portfolio_id)
    if title is not None:
        portfolio.title = _clean_title(title)
    touch(portfolio)
    session.add(portfolio)
    session.flush()
    return portfolio


def set_thumbnail(session: Session, actor: Actor, portfolio_id: UUID, url: str | None) -> Portfolio:
    portfolio = load_editable(session, actor, portfolio_id)
    portfolio.thumbnail_url = url
    touch(portfolio)
    session.add(portfolio)
    session.flush()
    return portfolio


def delete_portfolio(session: Session, actor: Actor, portfolio_id: UUID) -> None:
    portfolio = load_portfolio(session, portfolio_id, lock=True)
    if not (actor.is_admin or actor.owns(portfolio.user_id)):
        if is_visible_to(actor, portfolio):
            raise ForbiddenError("not_portfolio_owner")
        raise NotFoundError("portfolio_not_found")
    if portfolio.status == PortfolioStatus.PENDING_REVIEW.value:
        raise ForbiddenError("portfolio_locked", "portfolio cannot be deleted while under review")
    session.delete(portfolio)
    session.flush()
