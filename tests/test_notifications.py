from __future__ import annotations

import logging

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from blocks import store
from db.models import AuditEvent, Notification, Portfolio
from notifications import FollowCreated, dispatch, fanout, inbox
from portfolios import service, state
from portfolios.errors import NotFoundError
from social import graph


def _broken_persist(session, notification) -> None:
    raise OperationalError("INSERT INTO notification", {}, Exception("disk full"))


def test_fanout_failure_is_logged_and_does_not_block_follow(session, author, visitor, monkeypatch, caplog) -> None:
    monkeypatch.setattr(fanout, "_persist", _broken_persist)

    with caplog.at_level(logging.ERROR, logger="notifications.fanout"):
        result = graph.set_follow(session, author, visitor.user_id, True)
    session.commit()

    assert result.is_following and result.follower_count == 1
    assert session.query(Notification).count() == 0
    assert any("notification write failed" in record.getMessage() for record in caplog.records)


def test_fanout_failure_keeps_transition(session, author, admin, monkeypatch) -> None:
    portfolio = service.create_portfolio(session, author, "Resilient")
    store.add_block(session, author, portfolio.id, "text", {"content": "x"})
    state.submit(session, author, portfolio.id)
    monkeypatch.setattr(fanout, "_persist", _broken_persist)

    state.approve(session, admin, portfolio.id)
    session.commit()

    assert portfolio.status == "published"


def test_rejected_notification_insert_rolls_back_to_savepoint(session, author, admin, monkeypatch, caplog) -> None:
    portfolio = service.create_portfolio(session, author, "Constrained")
    store.add_block(session, author, portfolio.id, "text", {"content": "x"})
    state.submit(session, author, portfolio.id)
    monkeypatch.setattr(fanout, "CONTENT_APPROVED", "content_praised")

    with caplog.at_level(logging.ERROR, logger="notifications.fanout"):
        state.approve(session, admin, portfolio.id)
    session.commit()

    stored = session.execute(select(Portfolio.status).where(Portfolio.id == portfolio.id)).scalar_one()
    assert stored == "published"
    assert session.query(Notification).count() == 0
    assert session.query(AuditEvent).filter(AuditEvent.event_type == "portfolio_transition").count() == 2
    assert any("notification write failed" in record.getMessage() for record in caplog.records)


def test_dispatch_rejects_unknown_events(session) -> None:
    with pytest.raises(TypeError):
        dispatch(session, object())


def test_follow_notification_names_the_follower(session, author, visitor) -> None:
    notification = dispatch(session, FollowCreated(follower_id=author.user_id, followee_id=visitor.user_id))

    assert notification is not None
    assert notification.type == "new_follower"
    assert notification.message == "Ania started following you."


def test_inbox_listing_and_read_state(session, author, visitor, admin) -> None:
    graph.set_follow(session, visitor, author.user_id, True)
    graph.set_follow(session, admin, author.user_id, True)

    page = inbox.list_notifications(session, author, page=1, limit=1)
    assert page["meta"] == {"page": 1, "limit": 1, "total": 2, "total_pages": 2, "unread_count": 2}
    assert len(page["data"]) == 1

    first = page["data"][0]
    inbox.mark_read(session, author, first.id)
    assert inbox.unread_count(session, author) == 1
    assert inbox.list_notifications(session, author, unread_only=True)["meta"]["total"] == 1

    assert inbox.mark_all_read(session, author) == 1
    assert inbox.unread_count(session, author) == 0

    inbox.delete_notification(session, author, first.id)
    assert inbox.list_notifications(session, author)["meta"]["total"] == 1


def test_inbox_is_private_to_recipient(session, author, visitor) -> None:
    graph.set_follow(session, visitor, author.user_id, True)
    notification = inbox.list_notifications(session, author)["data"][0]

    with pytest.raises(NotFoundError):
        inbox.mark_read(session, visitor, notification.id)
    with pytest.raises(NotFoundError):
        inbox.delete_notification(session, visitor, notification.id)
