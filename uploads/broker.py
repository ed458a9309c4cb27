"""Two-phase uploads: presign a short-lived write grant, then confirm.

The broker never sees the bytes. ``presign`` records an ``UploadSession`` and
hands out a grant; the client writes the object itself (directly or through
the relay); ``confirm`` checks the object landed and binds its URL to the
block, document thumbnail or profile field the session was opened for.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import PurePosixPath
from typing import Dict
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from blocks.schema import BlockKind
from blocks.store import update_block
from db.models import ContentBlock, UploadSession
from portfolios.context import Actor, set_profile_media
from portfolios.errors import ConflictError, ExpiredError, NotFoundError, UpstreamError, ValidationError
from portfolios.service import set_thumbnail
from portfolios.state import _utc_now, load_portfolio

from .limits import INTENDED_USES, UploadLimits, get_upload_limits
from .storage import ObjectStore

logger = logging.getLogger(__name__)

_EXT_RE = re.compile(r"^\.[a-z0-9]{1,8}$")
_PROFILE_FIELDS = {"avatar": "avatar_url", "banner": "banner_url"}


@dataclass(frozen=True)
class UploadGrant:
    upload_session_id: UUID
    object_key: str
    url: str
    method: str
    headers: Dict[str, str]
    expires_in: int
    object_url: str


@dataclass(frozen=True)
class ConfirmResult:
    upload_session_id: UUID
    intended_use: str
    object_url: str
    portfolio_id: UUID | None
    block_id: UUID | None
    already_confirmed: bool


def _extension(filename: str) -> str:
    suffix = PurePosixPath(filename.replace("\\", "/")).suffix.lower()
    return suffix if _EXT_RE.match(suffix) else ""


def _normalize_content_type(content_type: str | None) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def _check_target(
    session: Session,
    actor: Actor,
    intended_use: str,
    portfolio_id: UUID | None,
    block_id: UUID | None,
) -> None:
    if intended_use in _PROFILE_FIELDS:
        if portfolio_id or block_id:
            raise ValidationError("unexpected_upload_target", f"{intended_use} uploads take no target")
        return
    if intended_use == "thumbnail":
        if portfolio_id is None:
            raise ValidationError("portfolio_required")
        if block_id is not None:
            raise ValidationError("unexpected_upload_target", "thumbnail uploads take no block")
    if portfolio_id is None:
        if block_id is not None:
            raise ValidationError("portfolio_required")
        return

    portfolio = load_portfolio(session, portfolio_id)
    if not (actor.is_admin or actor.owns(portfolio.user_id)):
        raise NotFoundError("portfolio_not_found")
    if block_id is not None:
        block = session.get(ContentBlock, block_id)
        if block is None or block.portfolio_id != portfolio.id:
            raise NotFoundError("block_not_found")
        if block.block_type != BlockKind.IMAGE.value:
            raise ValidationError("block_not_image", "only image blocks accept uploads")


def presign(
    session: Session,
    actor: Actor,
    store: ObjectStore,
    *,
    intended_use: str,
    filename: str,
    content_type: str,
    size: int,
    portfolio_id: UUID | None = None,
    block_id: UUID | None = None,
    limits: UploadLimits | None = None,
) -> UploadGrant:
    limits = limits or get_upload_limits()
    if intended_use not in INTENDED_USES:
        raise ValidationError("unknown_intended_use")
    rule = limits.for_use(intended_use)
    if rule is None:
        raise ValidationError("upload_use_disabled", f"uploads for {intended_use} are not configured")

    filename = (filename or "").strip()
    if not filename:
        raise ValidationError("filename_required")
    content_type = _normalize_content_type(content_type)
    if content_type not in rule.content_types:
        raise ValidationError(
            "unsupported_content_type",
            f"{content_type or 'missing content type'} is not allowed for {intended_use}",
        )
    if size is None or int(size) <= 0:
        raise ValidationError("invalid_upload_size")
    if int(size) > rule.max_bytes:
        raise ValidationError("upload_too_large", f"{intended_use} uploads are limited to {rule.max_bytes} bytes")

    _check_target(session, actor, intended_use, portfolio_id, block_id)

    session_id = uuid4()
    object_key = f"{intended_use}/{actor.user_id.hex}/{session_id.hex}{_extension(filename)}"
    now = _utc_now()
    grant = store.write_grant(object_key, content_type, limits.url_ttl_seconds)
    upload = UploadSession(
        id=session_id,
        user_id=actor.user_id,
        intended_use=intended_use,
        filename=filename,
        content_type=content_type,
        size_bytes=int(size),
        object_key=object_key,
        portfolio_id=portfolio_id,
        block_id=block_id,
        expires_at=now + timedelta(seconds=limits.url_ttl_seconds),
        created_at=now,
    )
    session.add(upload)
    session.flush()
    return UploadGrant(
        upload_session_id=upload.id,
        object_key=object_key,
        url=grant.url,
        method=grant.method,
        headers=dict(grant.headers),
        expires_in=limits.url_ttl_seconds,
        object_url=store.object_url(object_key),
    )


def _result(upload: UploadSession, *, already_confirmed: bool) -> ConfirmResult:
    return ConfirmResult(
        upload_session_id=upload.id,
        intended_use=upload.intended_use,
        object_url=upload.object_url or "",
        portfolio_id=upload.portfolio_id,
        block_id=upload.block_id,
        already_confirmed=already_confirmed,
    )


def _bind(session: Session, actor: Actor, upload: UploadSession, url: str) -> None:
    if upload.intended_use in _PROFILE_FIELDS:
        set_profile_media(session, upload.user_id, _PROFILE_FIELDS[upload.intended_use], url)
    elif upload.intended_use == "thumbnail":
        set_thumbnail(session, actor, upload.portfolio_id, url)
    elif upload.block_id is not None:
        update_block(session, actor, upload.portfolio_id, upload.block_id, {"url": url})


def confirm(
    session: Session,
    actor: Actor,
    store: ObjectStore,
    *,
    upload_session_id: UUID,
    object_key: str,
    now: datetime | None = None,
) -> ConfirmResult:
    upload = session.get(UploadSession, upload_session_id)
    if upload is None or upload.user_id != actor.user_id:
        raise NotFoundError("upload_session_not_found")
    if upload.object_key != object_key:
        raise ConflictError("upload_key_mismatch")
    if upload.consumed:
        return _result(upload, already_confirmed=True)

    now = now or _utc_now()
    if upload.expires_at <= now:
        raise ExpiredError("upload_session_expired")
    if not store.object_exists(upload.object_key):
        raise ConflictError("upload_object_missing", "object has not been written yet")

    claimed = session.execute(
        update(UploadSession)
        .where(UploadSession.id == upload.id, UploadSession.consumed_at.is_(None))
        .values(consumed_at=now)
        .execution_options(synchronize_session=False)
    )
    if not claimed.rowcount:
        session.refresh(upload)
        logger.info("upload %s confirmed concurrently; returning existing binding", upload.id)
        return _result(upload, already_confirmed=True)

    url = store.object_url(upload.object_key)
    _bind(session, actor, upload, url)
    session.execute(
        update(UploadSession)
        .where(UploadSession.id == upload.id)
        .values(object_url=url)
        .execution_options(synchronize_session=False)
    )
    session.flush()
    session.refresh(upload)
    logger.info("upload %s confirmed as %s for %s", upload.id, upload.intended_use, actor.user_id)
    return _result(upload, already_confirmed=False)


def cleanup_expired_sessions(
    session: Session,
    store: ObjectStore,
    *,
    now: datetime | None = None,
    grace: timedelta = timedelta(0),
) -> int:
    cutoff = (now or _utc_now()) - grace
    stale = session.execute(
        select(UploadSession).where(
            UploadSession.consumed_at.is_(None),
            UploadSession.expires_at < cutoff,
        )
    ).scalars().all()
    for upload in stale:
        try:
            store.delete_object(upload.object_key)
        except UpstreamError as exc:
            logger.warning("could not delete stray object %s: %s", upload.object_key, exc)
        session.delete(upload)
    session.flush()
    if stale:
        logger.info("removed %d expired upload session(s)", len(stale))
    return len(stale)
