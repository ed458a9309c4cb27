"""Follow and like edges with denormalized counters.

An edge row existing *is* the "on" state. Inserts run in a savepoint so that
losing a race on the edge's primary key turns into a no-op, and counters are
moved with ``count = count +/- 1`` in the same transaction as the edge change.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import delete, desc, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models import Portfolio, PortfolioLike, UserAccount, UserFollow
from notifications import FollowCreated, PortfolioLiked, dispatch
from portfolios.context import Actor, get_user
from portfolios.errors import NotFoundError, ValidationError
from portfolios.state import is_visible_to, load_portfolio

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FollowState:
    user_id: UUID
    is_following: bool
    follower_count: int
    changed: bool


@dataclass(frozen=True)
class LikeState:
    portfolio_id: UUID
    is_liked: bool
    like_count: int
    changed: bool


def _insert_edge(session: Session, edge: UserFollow | PortfolioLike) -> bool:
    try:
        with session.begin_nested():
            session.add(edge)
            session.flush()
    except IntegrityError:
        logger.info("edge insert lost a race: %r", edge)
        return False
    return True


def _is_following(session: Session, follower_id: UUID, followee_id: UUID) -> bool:
    stmt = select(UserFollow.follower_id).where(
        UserFollow.follower_id == follower_id,
        UserFollow.following_id == followee_id,
    )
    return session.execute(stmt).first() is not None


def _has_liked(session: Session, user_id: UUID, portfolio_id: UUID) -> bool:
    stmt = select(PortfolioLike.user_id).where(
        PortfolioLike.user_id == user_id,
        PortfolioLike.portfolio_id == portfolio_id,
    )
    return session.execute(stmt).first() is not None


def _bump_follow_counters(session: Session, follower_id: UUID, followee_id: UUID, delta: int) -> None:
    session.execute(
        update(UserAccount)
        .where(UserAccount.id == followee_id)
        .values(follower_count=UserAccount.follower_count + delta)
        .execution_options(synchronize_session=False)
    )
    session.execute(
        update(UserAccount)
        .where(UserAccount.id == follower_id)
        .values(following_count=UserAccount.following_count + delta)
        .execution_options(synchronize_session=False)
    )


def set_follow(session: Session, actor: Actor, followee_id: UUID, following: bool) -> FollowState:
    if actor.user_id == followee_id:
        raise ValidationError("cannot_follow_self")
    followee = get_user(session, followee_id)

    changed = False
    if following:
        if not _is_following(session, actor.user_id, followee_id):
            changed = _insert_edge(session, UserFollow(follower_id=actor.user_id, following_id=followee_id))
        if changed:
            _bump_follow_counters(session, actor.user_id, followee_id, 1)
    else:
        result = session.execute(
            delete(UserFollow)
            .where(UserFollow.follower_id == actor.user_id, UserFollow.following_id == followee_id)
            .execution_options(synchronize_session=False)
        )
        changed = bool(result.rowcount)
        if changed:
            _bump_follow_counters(session, actor.user_id, followee_id, -1)

    session.flush()
    session.refresh(followee)
    follower = session.get(UserAccount, actor.user_id)
    if follower is not None:
        session.refresh(follower)

    if changed and following:
        dispatch(session, FollowCreated(follower_id=actor.user_id, followee_id=followee_id))
    return FollowState(
        user_id=followee_id,
        is_following=following,
        follower_count=followee.follower_count,
        changed=changed,
    )


def toggle_follow(session: Session, actor: Actor, followee_id: UUID) -> FollowState:
    if actor.user_id == followee_id:
        raise ValidationError("cannot_follow_self")
    return set_follow(session, actor, followee_id, not _is_following(session, actor.user_id, followee_id))


def set_like(session: Session, actor: Actor, portfolio_id: UUID, liked: bool) -> LikeState:
    portfolio = load_portfolio(session, portfolio_id)
    if actor.owns(portfolio.user_id):
        raise ValidationError("cannot_like_own_portfolio")

    changed = False
    if liked:
        if not is_visible_to(actor, portfolio):
            raise NotFoundError("portfolio_not_found")
        if not _has_liked(session, actor.user_id, portfolio.id):
            changed = _insert_edge(session, PortfolioLike(user_id=actor.user_id, portfolio_id=portfolio.id))
        delta = 1
    else:
        result = session.execute(
            delete(PortfolioLike)
            .where(PortfolioLike.user_id == actor.user_id, PortfolioLike.portfolio_id == portfolio.id)
            .execution_options(synchronize_session=False)
        )
        changed = bool(result.rowcount)
        delta = -1

    if changed:
        session.execute(
            update(Portfolio)
            .where(Portfolio.id == portfolio.id)
            .values(like_count=Portfolio.like_count + delta)
            .execution_options(synchronize_session=False)
        )
    session.flush()
    session.refresh(portfolio)

    if changed and liked:
        dispatch(
            session,
            PortfolioLiked(
                user_id=actor.user_id,
                portfolio_id=portfolio.id,
                owner_id=portfolio.user_id,
                title=portfolio.title,
                slug=portfolio.slug,
            ),
        )
    return LikeState(
        portfolio_id=portfolio.id,
        is_liked=liked,
        like_count=portfolio.like_count,
        changed=changed,
    )


def toggle_like(session: Session, actor: Actor, portfolio_id: UUID) -> LikeState:
    return set_like(session, actor, portfolio_id, not _has_liked(session, actor.user_id, portfolio_id))


def _edge_users(session: Session, stmt, limit: int, offset: int) -> list[UserAccount]:
    stmt = stmt.order_by(desc(UserFollow.created_at)).limit(limit).offset(offset)
    return list(session.execute(stmt).scalars().all())


def list_followers(session: Session, user_id: UUID, *, limit: int = 20, offset: int = 0) -> list[UserAccount]:
    get_user(session, user_id)
    stmt = (
        select(UserAccount)
        .join(UserFollow, UserFollow.follower_id == UserAccount.id)
        .where(UserFollow.following_id == user_id)
    )
    return _edge_users(session, stmt, limit, offset)


def list_following(session: Session, user_id: UUID, *, limit: int = 20, offset: int = 0) -> list[UserAccount]:
    get_user(session, user_id)
    stmt = (
        select(UserAccount)
        .join(UserFollow, UserFollow.following_id == UserAccount.id)
        .where(UserFollow.follower_id == user_id)
    )
    return _edge_users(session, stmt, limit, offset)
