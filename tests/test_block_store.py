from __future__ import annotations

from random import Random
from uuid import uuid4

import pytest

from blocks import store
from portfolios import service, state
from portfolios.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError


def _orders(session, portfolio_id) -> list[int]:
    return [block.block_order for block in store.list_blocks(session, portfolio_id)]


def _text(n: int) -> dict:
    return {"content": f"paragraph {n}"}


def test_add_block_appends_at_tail_and_bumps_revision(session, author) -> None:
    portfolio = service.create_portfolio(session, author, "My Work")
    assert portfolio.revision == 1

    first = store.add_block(session, author, portfolio.id, "text", _text(1))
    second = store.add_block(session, author, portfolio.id, "link_button", {"text": "Repo", "url": "https://example.com"})

    assert (first.block_order, second.block_order) == (0, 1)
    assert portfolio.revision == 3


def test_order_stays_dense_after_mixed_operations(session, author) -> None:
    portfolio = service.create_portfolio(session, author, "Dense")
    rng = Random(7)
    for n in range(6):
        store.add_block(session, author, portfolio.id, "text", _text(n))

    for step in range(30):
        blocks = store.list_blocks(session, portfolio.id)
        action = rng.choice(["add", "remove", "reorder"]) if blocks else "add"
        if action == "add":
            store.add_block(session, author, portfolio.id, "text", _text(100 + step))
        elif action == "remove":
            store.remove_block(session, author, portfolio.id, rng.choice(blocks).id)
        else:
            ids = [block.id for block in blocks]
            rng.shuffle(ids)
            store.reorder_blocks(session, author, portfolio.id, ids)
        orders = _orders(session, portfolio.id)
        assert orders == list(range(len(orders)))


def test_remove_block_shifts_later_blocks_down(session, author) -> None:
    portfolio = service.create_portfolio(session, author, "Shift")
    blocks = [store.add_block(session, author, portfolio.id, "text", _text(n)) for n in range(4)]

    remaining = store.remove_block(session, author, portfolio.id, blocks[1].id)

    assert [block.id for block in remaining] == [blocks[0].id, blocks[2].id, blocks[3].id]
    assert [block.block_order for block in remaining] == [0, 1, 2]


def test_reorder_assigns_list_positions(session, author) -> None:
    portfolio = service.create_portfolio(session, author, "Reorder")
    a, b, c = (store.add_block(session, author, portfolio.id, "text", _text(n)) for n in range(3))

    result = store.reorder_blocks(session, author, portfolio.id, [c.id, a.id, b.id])

    assert [block.id for block in result] == [c.id, a.id, b.id]
    assert [block.block_order for block in result] == [0, 1, 2]


@pytest.mark.parametrize("mutate", ["missing", "duplicate", "foreign"])
def test_reorder_rejects_stale_id_sets(session, author, mutate) -> None:
    portfolio = service.create_portfolio(session, author, "Stale")
    ids = [store.add_block(session, author, portfolio.id, "text", _text(n)).id for n in range(3)]
    if mutate == "missing":
        ids = ids[:2]
    elif mutate == "duplicate":
        ids = [ids[0], ids[0], ids[1]]
    else:
        ids = ids[:2] + [uuid4()]

    with pytest.raises(ConflictError) as exc:
        store.reorder_blocks(session, author, portfolio.id, ids)
    assert exc.value.code == "stale_block_order"
    assert _orders(session, portfolio.id) == [0, 1, 2]


def test_update_block_merges_and_revalidates(session, author) -> None:
    portfolio = service.create_portfolio(session, author, "Images")
    block = store.add_block(session, author, portfolio.id, "image", {"url": "https://cdn.example.com/a.png"})

    updated = store.update_block(session, author, portfolio.id, block.id, {"caption": "Sunset"})
    assert updated.payload == {"url": "https://cdn.example.com/a.png", "caption": "Sunset"}
    assert updated.block_order == 0

    with pytest.raises(ValidationError):
        store.update_block(session, author, portfolio.id, block.id, {"url": "ftp://nope"})


def test_add_block_rejects_invalid_payload_without_side_effects(session, author) -> None:
    portfolio = service.create_portfolio(session, author, "Invalid")

    with pytest.raises(ValidationError) as exc:
        store.add_block(session, author, portfolio.id, "table", {"headers": ["a", "b"], "rows": [["1"]]})
    assert exc.value.code == "invalid_block_payload"
    assert store.list_blocks(session, portfolio.id) == []
    assert portfolio.revision == 1


def test_block_from_other_portfolio_is_not_found(session, author) -> None:
    first = service.create_portfolio(session, author, "First")
    second = service.create_portfolio(session, author, "Second")
    block = store.add_block(session, author, first.id, "text", _text(1))

    with pytest.raises(NotFoundError):
        store.update_block(session, author, second.id, block.id, {"content": "moved"})
    with pytest.raises(NotFoundError):
        store.remove_block(session, author, second.id, block.id)


def test_editing_is_locked_while_under_review(session, author) -> None:
    portfolio = service.create_portfolio(session, author, "Locked")
    block = store.add_block(session, author, portfolio.id, "text", _text(1))
    state.submit(session, author, portfolio.id)

    with pytest.raises(ForbiddenError) as exc:
        store.update_block(session, author, portfolio.id, block.id, {"content": "late edit"})
    assert exc.value.code == "portfolio_locked"
    with pytest.raises(ForbiddenError):
        store.add_block(session, author, portfolio.id, "text", _text(2))


def test_other_students_cannot_edit(session, author, visitor) -> None:
    portfolio = service.create_portfolio(session, author, "Mine")

    with pytest.raises(NotFoundError):
        store.add_block(session, visitor, portfolio.id, "text", _text(1))
