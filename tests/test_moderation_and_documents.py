from __future__ import annotations

from datetime import timedelta

import pytest

from blocks import store
from portfolios import moderation, service, state
from portfolios.errors import ForbiddenError, NotFoundError, ValidationError


def _submitted(session, actor, title: str):
    portfolio = service.create_portfolio(session, actor, title)
    store.add_block(session, actor, portfolio.id, "text", {"content": title})
    state.submit(session, actor, portfolio.id)
    return portfolio


def test_queue_lists_oldest_submission_first(session, author, visitor, admin) -> None:
    first = _submitted(session, author, "Robotics")
    second = _submitted(session, visitor, "Photography")
    first.submitted_at = second.submitted_at - timedelta(minutes=5)
    session.flush()

    queue = moderation.list_queue(session, admin)

    assert [item.id for item in queue] == [first.id, second.id]
    assert moderation.queue_size(session, admin) == 2
    assert [item.id for item in moderation.list_queue(session, admin, search="photo")] == [second.id]


def test_queue_is_admin_only(session, author) -> None:
    with pytest.raises(ForbiddenError) as exc:
        moderation.list_queue(session, author)
    assert exc.value.code == "admin_required"


def test_approved_portfolio_leaves_queue(session, author, admin) -> None:
    portfolio = _submitted(session, author, "Done")
    moderation.approve(session, admin, portfolio.id)

    assert moderation.list_queue(session, admin) == []
    assert [item.id for item in service.list_public_portfolios(session)] == [portfolio.id]


def test_slugs_are_unique_per_owner(session, author, visitor) -> None:
    first = service.create_portfolio(session, author, "Café Portfolio!")
    second = service.create_portfolio(session, author, "Cafe portfolio")
    other = service.create_portfolio(session, visitor, "Cafe portfolio")

    assert first.slug == "cafe-portfolio"
    assert second.slug == "cafe-portfolio-2"
    assert other.slug == "cafe-portfolio"


def test_title_validation(session, author) -> None:
    with pytest.raises(ValidationError):
        service.create_portfolio(session, author, "   ")
    with pytest.raises(ValidationError) as exc:
        service.create_portfolio(session, author, "x" * 201)
    assert exc.value.code == "title_too_long"


def test_draft_is_hidden_from_others(session, author, visitor, admin) -> None:
    portfolio = service.create_portfolio(session, author, "Secret draft")

    assert service.get_portfolio(session, author, portfolio.id) is portfolio
    assert service.get_portfolio(session, admin, portfolio.id) is portfolio
    with pytest.raises(NotFoundError):
        service.get_portfolio(session, visitor, portfolio.id)
    with pytest.raises(NotFoundError):
        service.get_portfolio_by_slug(session, None, "ania", portfolio.slug)


def test_delete_is_refused_under_review(session, author) -> None:
    portfolio = _submitted(session, author, "Pending")

    with pytest.raises(ForbiddenError):
        service.delete_portfolio(session, author, portfolio.id)


def test_owner_deletes_draft_with_blocks(session, author) -> None:
    portfolio = service.create_portfolio(session, author, "Scratch")
    store.add_block(session, author, portfolio.id, "text", {"content": "gone soon"})

    service.delete_portfolio(session, author, portfolio.id)

    with pytest.raises(NotFoundError):
        service.get_portfolio(session, author, portfolio.id)
    assert store.list_blocks(session, portfolio.id) == []
