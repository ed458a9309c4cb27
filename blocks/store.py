"""Ordered content blocks of a portfolio.

For every portfolio the ``block_order`` values are exactly ``0..N-1``. The
unique (portfolio_id, block_order) constraint is checked row by row, so any
re-pack first parks the affected rows in a disjoint negative range and then
writes their final positions, all inside the caller's transaction.
"""
from __future__ import annotations

from typing import Any, Dict, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from db.models import ContentBlock, Portfolio
from portfolios.context import Actor
from portfolios.errors import ConflictError, NotFoundError
from portfolios.state import _utc_now, load_editable, touch

from .schema import parse_kind, validate_payload


def list_blocks(session: Session, portfolio_id: UUID) -> list[ContentBlock]:
    stmt = (
        select(ContentBlock)
        .where(ContentBlock.portfolio_id == portfolio_id)
        .order_by(ContentBlock.block_order)
    )
    return list(session.execute(stmt).scalars().all())


def _get_block(session: Session, portfolio: Portfolio, block_id: UUID) -> ContentBlock:
    block = session.get(ContentBlock, block_id)
    if block is None or block.portfolio_id != portfolio.id:
        raise NotFoundError("block_not_found")
    return block


def _finish(session: Session, portfolio: Portfolio) -> None:
    touch(portfolio, _utc_now())
    session.add(portfolio)
    session.flush()


def add_block(
    session: Session,
    actor: Actor,
    portfolio_id: UUID,
    kind: str,
    payload: Dict[str, Any] | None,
) -> ContentBlock:
    block_kind = parse_kind(kind)
    clean = validate_payload(block_kind, payload)
    portfolio = load_editable(session, actor, portfolio_id)

    tail = session.execute(
        select(func.count()).select_from(ContentBlock).where(ContentBlock.portfolio_id == portfolio.id)
    ).scalar_one()
    now = _utc_now()
    block = ContentBlock(
        portfolio_id=portfolio.id,
        block_type=block_kind.value,
        block_order=int(tail),
        payload=clean,
        created_at=now,
        updated_at=now,
    )
    session.add(block)
    _finish(session, portfolio)
    return block


def update_block(
    session: Session,
    actor: Actor,
    portfolio_id: UUID,
    block_id: UUID,
    partial_payload: Dict[str, Any] | None,
) -> ContentBlock:
    portfolio = load_editable(session, actor, portfolio_id)
    block = _get_block(session, portfolio, block_id)

    merged = dict(block.payload or {})
    merged.update(partial_payload or {})
    block.payload = validate_payload(block.block_type, merged)
    block.updated_at = _utc_now()
    session.add(block)
    _finish(session, portfolio)
    return block


def reorder_blocks(
    session: Session,
    actor: Actor,
    portfolio_id: UUID,
    block_ids: Sequence[UUID],
) -> list[ContentBlock]:
    portfolio = load_editable(session, actor, portfolio_id)
    current = {block.id: block for block in list_blocks(session, portfolio.id)}

    requested = list(block_ids)
    if len(requested) != len(set(requested)) or set(requested) != set(current):
        raise ConflictError(
            "stale_block_order",
            "block ids must be exactly the portfolio's current blocks",
        )

    session.execute(
        update(ContentBlock)
        .where(ContentBlock.portfolio_id == portfolio.id)
        .values(block_order=-ContentBlock.block_order - 1)
        .execution_options(synchronize_session=False)
    )
    now = _utc_now()
    for position, block_id in enumerate(requested):
        session.execute(
            update(ContentBlock)
            .where(ContentBlock.id == block_id)
            .values(block_order=position, updated_at=now)
            .execution_options(synchronize_session=False)
        )
    for block in current.values():
        session.expire(block)
    _finish(session, portfolio)
    return list_blocks(session, portfolio.id)


def remove_block(
    session: Session,
    actor: Actor,
    portfolio_id: UUID,
    block_id: UUID,
) -> list[ContentBlock]:
    portfolio = load_editable(session, actor, portfolio_id)
    block = _get_block(session, portfolio, block_id)
    removed_order = block.block_order

    session.delete(block)
    session.flush()

    # shift down: park later blocks at -(order), then land them on order - 1
    session.execute(
        update(ContentBlock)
        .where(ContentBlock.portfolio_id == portfolio.id, ContentBlock.block_order > removed_order)
        .values(block_order=-ContentBlock.block_order)
        .execution_options(synchronize_session=False)
    )
    session.execute(
        update(ContentBlock)
        .where(ContentBlock.portfolio_id == portfolio.id, ContentBlock.block_order < 0)
        .values(block_order=-ContentBlock.block_order - 1)
        .execution_options(synchronize_session=False)
    )
    session.expire_all()
    _finish(session, portfolio)
    return list_blocks(session, portfolio.id)
