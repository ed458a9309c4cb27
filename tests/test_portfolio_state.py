from __future__ import annotations

import pytest
from sqlalchemy import select

from blocks import store
from db.models import AuditEvent, Notification
from portfolios import moderation, service, state
from portfolios.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError


def _notifications(session, user_id, type_: str) -> list[Notification]:
    stmt = select(Notification).where(Notification.user_id == user_id, Notification.type == type_)
    return list(session.execute(stmt).scalars().all())


def test_review_round_trip(session, author, admin) -> None:
    portfolio = service.create_portfolio(session, author, "Graduation Project")

    with pytest.raises(ValidationError) as exc:
        state.submit(session, author, portfolio.id)
    assert exc.value.code == "portfolio_empty"
    assert portfolio.status == "draft"

    block = store.add_block(session, author, portfolio.id, "text", {"content": "Hello"})
    state.submit(session, author, portfolio.id)
    assert portfolio.status == "pending_review"
    assert portfolio.submitted_at is not None

    moderation.reject(session, admin, portfolio.id, "fix formatting")
    assert portfolio.status == "rejected"
    assert portfolio.admin_review_note == "fix formatting"
    rejected = _notifications(session, author.user_id, "content_rejected")
    assert len(rejected) == 1
    assert rejected[0].data["note"] == "fix formatting"

    store.update_block(session, author, portfolio.id, block.id, {"content": "Hello, formatted"})
    state.submit(session, author, portfolio.id)
    assert portfolio.status == "pending_review"
    assert portfolio.admin_review_note is None

    moderation.approve(session, admin, portfolio.id)
    assert portfolio.status == "published"
    assert portfolio.published_at is not None
    assert portfolio.reviewed_by == admin.user_id
    assert len(_notifications(session, author.user_id, "content_approved")) == 1

    transitions = session.execute(
        select(AuditEvent).where(AuditEvent.event_type == "portfolio_transition")
    ).scalars().all()
    assert [event.payload["transition"] for event in transitions] == ["submit", "reject", "submit", "approve"]


def test_draft_cannot_jump_to_published(session, author, admin) -> None:
    portfolio = service.create_portfolio(session, author, "Shortcut")
    store.add_block(session, author, portfolio.id, "text", {"content": "x"})

    with pytest.raises(ConflictError) as exc:
        state.approve(session, admin, portfolio.id)
    assert exc.value.code == "invalid_transition"
    assert portfolio.status == "draft"


def test_authorization_is_checked_per_transition(session, author, admin, visitor) -> None:
    portfolio = service.create_portfolio(session, author, "Auth")
    store.add_block(session, author, portfolio.id, "text", {"content": "x"})

    with pytest.raises(ForbiddenError):
        state.submit(session, admin, portfolio.id)
    with pytest.raises(NotFoundError):
        state.submit(session, visitor, portfolio.id)

    state.submit(session, author, portfolio.id)
    with pytest.raises(ForbiddenError) as exc:
        state.approve(session, author, portfolio.id)
    assert exc.value.code == "approve_not_allowed"


def test_reject_requires_note(session, author, admin) -> None:
    portfolio = service.create_portfolio(session, author, "Note")
    store.add_block(session, author, portfolio.id, "text", {"content": "x"})
    state.submit(session, author, portfolio.id)

    with pytest.raises(ValidationError) as exc:
        moderation.reject(session, admin, portfolio.id, "   ")
    assert exc.value.code == "review_note_required"
    assert portfolio.status == "pending_review"


def test_archive_and_unarchive(session, author, admin, visitor) -> None:
    portfolio = service.create_portfolio(session, author, "Archive me")
    store.add_block(session, author, portfolio.id, "text", {"content": "x"})
    state.submit(session, author, portfolio.id)
    state.approve(session, admin, portfolio.id)

    assert state.is_visible_to(visitor, portfolio)
    assert state.is_visible_to(None, portfolio)

    state.archive(session, author, portfolio.id)
    assert portfolio.status == "archived"
    assert portfolio.archived_at is not None
    assert not state.is_visible_to(visitor, portfolio)
    assert service.list_public_portfolios(session) == []

    with pytest.raises(ForbiddenError):
        state.unarchive(session, admin, portfolio.id)
    state.unarchive(session, author, portfolio.id)
    assert portfolio.status == "draft"
    assert portfolio.archived_at is None
    store.add_block(session, author, portfolio.id, "text", {"content": "editable again"})


def test_admin_can_archive_published_portfolio(session, author, admin) -> None:
    portfolio = service.create_portfolio(session, author, "Taken down")
    store.add_block(session, author, portfolio.id, "text", {"content": "x"})
    state.submit(session, author, portfolio.id)
    state.approve(session, admin, portfolio.id)

    state.archive(session, admin, portfolio.id)
    assert portfolio.status == "archived"


def test_transitions_bump_revision(session, author) -> None:
    portfolio = service.create_portfolio(session, author, "Revisions")
    store.add_block(session, author, portfolio.id, "text", {"content": "x"})
    before = portfolio.revision

    state.submit(session, author, portfolio.id)

    assert portfolio.revision == before + 1
