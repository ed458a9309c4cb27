from __future__ import annotations

import pytest
from sqlalchemy import func, insert, select

from blocks import store
from db.models import Notification, PortfolioLike, UserAccount, UserFollow
from portfolios import service, state
from portfolios.errors import NotFoundError, ValidationError
from social import graph


def _count(session, user_id, type_: str) -> int:
    stmt = select(func.count()).select_from(Notification).where(
        Notification.user_id == user_id,
        Notification.type == type_,
    )
    return int(session.execute(stmt).scalar_one())


def _published(session, owner, admin, title: str = "Showcase"):
    portfolio = service.create_portfolio(session, owner, title)
    store.add_block(session, owner, portfolio.id, "text", {"content": title})
    state.submit(session, owner, portfolio.id)
    state.approve(session, admin, portfolio.id)
    return portfolio


def test_follow_then_unfollow_restores_counters(session, author, visitor) -> None:
    before = session.get(UserAccount, visitor.user_id).follower_count

    followed = graph.set_follow(session, author, visitor.user_id, True)
    assert followed.is_following and followed.changed
    assert followed.follower_count == before + 1
    assert session.get(UserAccount, author.user_id).following_count == 1

    unfollowed = graph.set_follow(session, author, visitor.user_id, False)
    assert not unfollowed.is_following and unfollowed.changed
    assert unfollowed.follower_count == before
    assert session.get(UserAccount, author.user_id).following_count == 0

    assert _count(session, visitor.user_id, "new_follower") == 1


def test_repeated_follow_is_idempotent(session, author, visitor) -> None:
    graph.set_follow(session, author, visitor.user_id, True)
    again = graph.set_follow(session, author, visitor.user_id, True)

    assert again.is_following and not again.changed
    assert again.follower_count == 1
    assert _count(session, visitor.user_id, "new_follower") == 1

    graph.set_follow(session, author, visitor.user_id, False)
    gone = graph.set_follow(session, author, visitor.user_id, False)
    assert not gone.changed
    assert gone.follower_count == 0


def test_toggle_follow_flips_state(session, author, visitor) -> None:
    assert graph.toggle_follow(session, author, visitor.user_id).is_following
    assert not graph.toggle_follow(session, author, visitor.user_id).is_following


def test_self_follow_is_rejected(session, author) -> None:
    with pytest.raises(ValidationError) as exc:
        graph.toggle_follow(session, author, author.user_id)
    assert exc.value.code == "cannot_follow_self"


def test_follower_lists(session, author, visitor, admin) -> None:
    graph.set_follow(session, author, visitor.user_id, True)
    graph.set_follow(session, admin, visitor.user_id, True)

    followers = {user.id for user in graph.list_followers(session, visitor.user_id)}
    assert followers == {author.user_id, admin.user_id}
    assert [user.id for user in graph.list_following(session, author.user_id)] == [visitor.user_id]


def test_toggle_like_twice_round_trips(session, author, visitor, admin) -> None:
    portfolio = _published(session, author, admin)
    start = portfolio.like_count

    liked = graph.toggle_like(session, visitor, portfolio.id)
    assert liked.is_liked and liked.like_count == start + 1

    unliked = graph.toggle_like(session, visitor, portfolio.id)
    assert not unliked.is_liked
    assert unliked.like_count == start
    assert _count(session, author.user_id, "content_liked") == 1


def test_like_requires_published_portfolio(session, author, visitor) -> None:
    draft = service.create_portfolio(session, author, "Draft")

    with pytest.raises(NotFoundError):
        graph.set_like(session, visitor, draft.id, True)


def test_self_like_is_rejected(session, author, admin) -> None:
    portfolio = _published(session, author, admin)

    with pytest.raises(ValidationError) as exc:
        graph.toggle_like(session, author, portfolio.id)
    assert exc.value.code == "cannot_like_own_portfolio"
    assert _count(session, author.user_id, "content_liked") == 0


def test_follow_that_loses_the_insert_race_is_a_no_op(session, author, visitor, monkeypatch) -> None:
    session.execute(insert(UserFollow).values(follower_id=author.user_id, following_id=visitor.user_id))
    monkeypatch.setattr(graph, "_is_following", lambda *args: False)

    result = graph.set_follow(session, author, visitor.user_id, True)

    assert result.is_following and not result.changed
    assert result.follower_count == 0
    assert session.get(UserAccount, author.user_id).following_count == 0
    assert _count(session, visitor.user_id, "new_follower") == 0
    assert session.query(UserFollow).count() == 1


def test_like_that_loses_the_insert_race_is_a_no_op(session, author, visitor, admin, monkeypatch) -> None:
    portfolio = _published(session, author, admin)
    session.execute(insert(PortfolioLike).values(user_id=visitor.user_id, portfolio_id=portfolio.id))
    monkeypatch.setattr(graph, "_has_liked", lambda *args: False)

    result = graph.set_like(session, visitor, portfolio.id, True)

    assert result.is_liked and not result.changed
    assert result.like_count == 0
    assert _count(session, author.user_id, "content_liked") == 0
