from __future__ import annotations

import logging
from datetime import datetime
from os import getenv
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import desc, select
from starlette.concurrency import run_in_threadpool

from blocks import store as block_store
from blocks.render import render_blocks
from db.models import AuditEvent, ContentBlock, Job, Notification, Portfolio, UserAccount
from db.session import SessionLocal
from notifications import inbox
from portfolios import moderation, service as portfolio_service, state
from portfolios.context import Actor, get_user
from portfolios.errors import PortfolioError, ValidationError
from social import graph
from uploads import broker
from uploads.storage import WriteGrant, get_object_store
from uploads.transport import RELAY_URL_HEADER, relay_write

logging.basicConfig(
    level=getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Portfolio Studio API", version="0.1.0")


def _cors_origins() -> list[str]:
    raw = getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PortfolioError)
async def _portfolio_error_handler(request: Request, exc: PortfolioError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.code, "message": exc.message})


def _paginate(limit: int, offset: int) -> tuple[int, int]:
    limit = max(1, min(limit, 200))
    offset = max(0, offset)
    return limit, offset


def _require_operator(x_operator_token: str | None = Header(default=None)) -> None:
    expected = getenv("OPERATOR_TOKEN", "")
    if not expected:
        if getenv("ALLOW_OPS_WITHOUT_TOKEN", "0") == "1":
            return
        raise HTTPException(status_code=503, detail="operator_token_missing")
    if x_operator_token != expected:
        raise HTTPException(status_code=401, detail="operator_token_required")


def _current_actor(session, x_user_id: str | None, *, required: bool = True) -> Actor | None:
    if not x_user_id:
        if required:
            raise HTTPException(status_code=401, detail="user_required")
        return None
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="invalid_user_id") from None
    user = session.get(UserAccount, user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="unknown_user")
    return Actor(user_id=user.id, role=user.role)


def _user_row(user: UserAccount) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "display_name": user.display_name,
        "avatar_url": user.avatar_url,
        "banner_url": user.banner_url,
        "follower_count": user.follower_count,
        "following_count": user.following_count,
    }


def _block_row(block: ContentBlock) -> dict:
    return {
        "id": block.id,
        "type": block.block_type,
        "order": block.block_order,
        "payload": block.payload,
        "updated_at": block.updated_at,
    }


def _portfolio_row(portfolio: Portfolio) -> dict:
    return {
        "id": portfolio.id,
        "user_id": portfolio.user_id,
        "title": portfolio.title,
        "slug": portfolio.slug,
        "status": portfolio.status,
        "admin_review_note": portfolio.admin_review_note,
        "thumbnail_url": portfolio.thumbnail_url,
        "like_count": portfolio.like_count,
        "revision": portfolio.revision,
        "created_at": portfolio.created_at,
        "updated_at": portfolio.updated_at,
        "submitted_at": portfolio.submitted_at,
        "reviewed_at": portfolio.reviewed_at,
        "published_at": portfolio.published_at,
        "archived_at": portfolio.archived_at,
    }


def _document_payload(session, portfolio: Portfolio) -> dict:
    payload = _portfolio_row(portfolio)
    payload["blocks"] = [_block_row(block) for block in block_store.list_blocks(session, portfolio.id)]
    return jsonable_encoder(payload)


def _notification_row(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data,
        "is_read": notification.is_read,
        "read_at": notification.read_at,
        "created_at": notification.created_at,
    }


class PresignRequest(BaseModel):
    intended_use: str
    filename: str
    content_type: str
    size: int = Field(ge=1)
    portfolio_id: UUID | None = Field(default=None)
    block_id: UUID | None = Field(default=None)


class ConfirmRequest(BaseModel):
    upload_session_id: UUID
    object_key: str


class DocumentCreateRequest(BaseModel):
    title: str


class DocumentUpdateRequest(BaseModel):
    title: str | None = Field(default=None)


class BlockCreateRequest(BaseModel):
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class BlockUpdateRequest(BaseModel):
    payload: Dict[str, Any]


class BlockReorderRequest(BaseModel):
    block_ids: List[UUID]


class RejectRequest(BaseModel):
    note: str = ""


class CleanupRequest(BaseModel):
    older_min: int | None = Field(default=None, ge=0, le=10080)
    enqueue: bool = Field(default=False)


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/settings")
def get_settings() -> dict:
    def flag(name: str, default: str = "") -> str:
        return getenv(name, default)

    return {
        "redis_url": flag("REDIS_URL", ""),
        "log_level": flag("LOG_LEVEL", "INFO"),
        "cors_origins": _cors_origins(),
        "operator_guard": flag("OPERATOR_TOKEN", "") != "",
        "blob_container": flag("BLOB_CONTAINER", "portfolio-media"),
        "blob_public_base_url": flag("BLOB_PUBLIC_BASE_URL", ""),
        "upload_limits_file": flag("UPLOAD_LIMITS_FILE", ""),
        "upload_url_ttl_s": flag("UPLOAD_URL_TTL_S", "600"),
        "upload_cleanup_grace_min": flag("UPLOAD_CLEANUP_GRACE_MIN", "60"),
        "rq_job_timeout": flag("RQ_JOB_TIMEOUT", "120"),
    }


@app.get("/audit-events")
def list_audit_events(
    event_type: Optional[str] = None,
    source: Optional[str] = None,
    actor_user_id: Optional[UUID] = None,
    occurred_after: Optional[datetime] = None,
    occurred_before: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    x_operator_token: Optional[str] = Header(default=None),
) -> List[dict]:
    _require_operator(x_operator_token)
    limit, offset = _paginate(limit, offset)
    session = SessionLocal()
    try:
        stmt = select(AuditEvent)
        if event_type:
            stmt = stmt.where(AuditEvent.event_type == event_type)
        if source:
            stmt = stmt.where(AuditEvent.source == source)
        if actor_user_id:
            stmt = stmt.where(AuditEvent.actor_user_id == actor_user_id)
        if occurred_after:
            stmt = stmt.where(AuditEvent.occurred_at >= occurred_after)
        if occurred_before:
            stmt = stmt.where(AuditEvent.occurred_at <= occurred_before)
        stmt = stmt.order_by(desc(AuditEvent.occurred_at)).limit(limit).offset(offset)
        rows = session.execute(stmt).scalars().all()
        return jsonable_encoder(rows)
    finally:
        session.close()


@app.get("/pipeline/jobs")
def list_jobs(
    status: Optional[str] = None,
    job_type: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    x_operator_token: Optional[str] = Header(default=None),
) -> List[dict]:
    _require_operator(x_operator_token)
    limit, offset = _paginate(limit, offset)
    session = SessionLocal()
    try:
        stmt = select(Job)
        if status:
            stmt = stmt.where(Job.status == status)
        if job_type:
            stmt = stmt.where(Job.job_type == job_type)
        stmt = stmt.order_by(desc(Job.created_at)).limit(limit).offset(offset)
        rows = session.execute(stmt).scalars().all()
        return jsonable_encoder(rows)
    finally:
        session.close()


@app.post("/ops/cleanup-uploads")
def ops_cleanup_uploads(request: CleanupRequest, x_operator_token: Optional[str] = Header(default=None)) -> dict:
    _require_operator(x_operator_token)
    if request.enqueue:
        from pipeline.queue import enqueue_upload_cleanup

        return jsonable_encoder(enqueue_upload_cleanup(request.older_min))

    from pipeline.jobs import run_upload_cleanup

    session = SessionLocal()
    try:
        result = run_upload_cleanup(session, get_object_store(), older_min=request.older_min, source="system")
        session.commit()
        return result
    finally:
        session.close()


@app.post("/uploads/presign")
def presign_upload(request: PresignRequest, x_user_id: Optional[str] = Header(default=None)) -> dict:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id)
        grant = broker.presign(
            session,
            actor,
            get_object_store(),
            intended_use=request.intended_use,
            filename=request.filename,
            content_type=request.content_type,
            size=request.size,
            portfolio_id=request.portfolio_id,
            block_id=request.block_id,
        )
        session.commit()
        return jsonable_encoder(grant)
    finally:
        session.close()


@app.post("/uploads/confirm")
def confirm_upload(request: ConfirmRequest, x_user_id: Optional[str] = Header(default=None)) -> dict:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id)
        result = broker.confirm(
            session,
            actor,
            get_object_store(),
            upload_session_id=request.upload_session_id,
            object_key=request.object_key,
        )
        session.commit()
        payload = jsonable_encoder(result)
        if result.portfolio_id is not None:
            portfolio = session.get(Portfolio, result.portfolio_id)
            if portfolio is not None:
                payload["document"] = _document_payload(session, portfolio)
        return payload
    finally:
        session.close()


def _check_relay(x_user_id: str | None, presigned_url: str | None) -> None:
    session = SessionLocal()
    try:
        _current_actor(session, x_user_id)
    finally:
        session.close()
    if not presigned_url:
        raise ValidationError("presigned_url_required")
    if not get_object_store().owns_url(presigned_url):
        raise ValidationError("foreign_upload_url", "relay only writes to the configured object store")


@app.put("/uploads/relay")
async def relay_upload(request: Request) -> dict:
    presigned_url = request.headers.get(RELAY_URL_HEADER)
    await run_in_threadpool(_check_relay, request.headers.get("x-user-id"), presigned_url)

    forwarded = {
        key: value
        for key, value in request.headers.items()
        if key.lower() == "content-type" or key.lower().startswith("x-ms-")
    }
    data = await request.body()
    await run_in_threadpool(relay_write, WriteGrant(url=presigned_url, method="PUT", headers=forwarded), data)
    logger.info("relayed %d byte upload", len(data))
    return {"status": "stored", "size": len(data)}


@app.post("/documents")
def create_document(request: DocumentCreateRequest, x_user_id: Optional[str] = Header(default=None)) -> dict:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id)
        portfolio = portfolio_service.create_portfolio(session, actor, request.title)
        session.commit()
        return _document_payload(session, portfolio)
    finally:
        session.close()


@app.get("/documents")
def list_documents(
    user_id: Optional[UUID] = None,
    search: Optional[str] = None,
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> List[dict]:
    limit, offset = _paginate(limit, offset)
    session = SessionLocal()
    try:
        rows = portfolio_service.list_public_portfolios(
            session, user_id=user_id, search=search, limit=limit, offset=offset
        )
        return jsonable_encoder([_portfolio_row(row) for row in rows])
    finally:
        session.close()


@app.get("/me/documents")
def list_my_documents(
    status: Optional[str] = None,
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    x_user_id: Optional[str] = Header(default=None),
) -> List[dict]:
    limit, offset = _paginate(limit, offset)
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id)
        rows = portfolio_service.list_my_portfolios(session, actor, status=status, limit=limit, offset=offset)
        return jsonable_encoder([_portfolio_row(row) for row in rows])
    finally:
        session.close()


@app.get("/documents/{portfolio_id}")
def get_document(portfolio_id: UUID, x_user_id: Optional[str] = Header(default=None)) -> dict:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id, required=False)
        portfolio = portfolio_service.get_portfolio(session, actor, portfolio_id)
        return _document_payload(session, portfolio)
    finally:
        session.close()


@app.get("/users/{username}/documents/{slug}")
def get_document_by_slug(username: str, slug: str, x_user_id: Optional[str] = Header(default=None)) -> dict:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id, required=False)
        portfolio = portfolio_service.get_portfolio_by_slug(session, actor, username, slug)
        return _document_payload(session, portfolio)
    finally:
        session.close()


@app.get("/documents/{portfolio_id}/render", response_class=HTMLResponse)
def render_document(portfolio_id: UUID, x_user_id: Optional[str] = Header(default=None)) -> HTMLResponse:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id, required=False)
        portfolio = portfolio_service.get_portfolio(session, actor, portfolio_id)
        return HTMLResponse(render_blocks(block_store.list_blocks(session, portfolio.id)))
    finally:
        session.close()


@app.patch("/documents/{portfolio_id}")
def update_document(
    portfolio_id: UUID,
    request: DocumentUpdateRequest,
    x_user_id: Optional[str] = Header(default=None),
) -> dict:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id)
        portfolio = portfolio_service.update_portfolio(session, actor, portfolio_id, title=request.title)
        session.commit()
        return _document_payload(session, portfolio)
    finally:
        session.close()


@app.delete("/documents/{portfolio_id}")
def delete_document(portfolio_id: UUID, x_user_id: Optional[str] = Header(default=None)) -> dict:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id)
        portfolio_service.delete_portfolio(session, actor, portfolio_id)
        session.commit()
        return {"id": str(portfolio_id), "deleted": True}
    finally:
        session.close()


@app.post("/documents/{portfolio_id}/blocks")
def create_block(
    portfolio_id: UUID,
    request: BlockCreateRequest,
    x_user_id: Optional[str] = Header(default=None),
) -> dict:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id)
        block = block_store.add_block(session, actor, portfolio_id, request.type, request.payload)
        session.commit()
        payload = _document_payload(session, state.load_portfolio(session, portfolio_id))
        payload["block"] = jsonable_encoder(_block_row(block))
        return payload
    finally:
        session.close()


@app.put("/documents/{portfolio_id}/blocks/reorder")
def reorder_blocks(
    portfolio_id: UUID,
    request: BlockReorderRequest,
    x_user_id: Optional[str] = Header(default=None),
) -> dict:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id)
        block_store.reorder_blocks(session, actor, portfolio_id, request.block_ids)
        session.commit()
        return _document_payload(session, state.load_portfolio(session, portfolio_id))
    finally:
        session.close()


@app.patch("/documents/{portfolio_id}/blocks/{block_id}")
def update_block(
    portfolio_id: UUID,
    block_id: UUID,
    request: BlockUpdateRequest,
    x_user_id: Optional[str] = Header(default=None),
) -> dict:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id)
        block_store.update_block(session, actor, portfolio_id, block_id, request.payload)
        session.commit()
        return _document_payload(session, state.load_portfolio(session, portfolio_id))
    finally:
        session.close()


@app.delete("/documents/{portfolio_id}/blocks/{block_id}")
def delete_block(portfolio_id: UUID, block_id: UUID, x_user_id: Optional[str] = Header(default=None)) -> dict:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id)
        block_store.remove_block(session, actor, portfolio_id, block_id)
        session.commit()
        return _document_payload(session, state.load_portfolio(session, portfolio_id))
    finally:
        session.close()


def _transition(portfolio_id: UUID, x_user_id: str | None, apply) -> dict:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id)
        portfolio = apply(session, actor, portfolio_id)
        session.commit()
        return _document_payload(session, portfolio)
    finally:
        session.close()


@app.post("/documents/{portfolio_id}/submit")
def submit_document(portfolio_id: UUID, x_user_id: Optional[str] = Header(default=None)) -> dict:
    return _transition(portfolio_id, x_user_id, state.submit)


@app.post("/documents/{portfolio_id}/approve")
def approve_document(portfolio_id: UUID, x_user_id: Optional[str] = Header(default=None)) -> dict:
    return _transition(portfolio_id, x_user_id, moderation.approve)


@app.post("/documents/{portfolio_id}/reject")
def reject_document(
    portfolio_id: UUID,
    request: RejectRequest,
    x_user_id: Optional[str] = Header(default=None),
) -> dict:
    return _transition(
        portfolio_id,
        x_user_id,
        lambda session, actor, pid: moderation.reject(session, actor, pid, request.note),
    )


@app.post("/documents/{portfolio_id}/archive")
def archive_document(portfolio_id: UUID, x_user_id: Optional[str] = Header(default=None)) -> dict:
    return _transition(portfolio_id, x_user_id, state.archive)


@app.post("/documents/{portfolio_id}/unarchive")
def unarchive_document(portfolio_id: UUID, x_user_id: Optional[str] = Header(default=None)) -> dict:
    return _transition(portfolio_id, x_user_id, state.unarchive)


@app.get("/moderation/queue")
def moderation_queue(
    search: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    x_user_id: Optional[str] = Header(default=None),
) -> dict:
    limit, offset = _paginate(limit, offset)
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id)
        rows = moderation.list_queue(session, actor, search=search, limit=limit, offset=offset)
        total = moderation.queue_size(session, actor, search=search)
        return jsonable_encoder(
            {
                "data": [_portfolio_row(row) for row in rows],
                "meta": {"total": total, "limit": limit, "offset": offset},
            }
        )
    finally:
        session.close()


@app.get("/users/{user_id}")
def get_profile(user_id: UUID) -> dict:
    session = SessionLocal()
    try:
        return jsonable_encoder(_user_row(get_user(session, user_id)))
    finally:
        session.close()


def _follow(user_id: UUID, x_user_id: str | None, following: bool) -> dict:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id)
        result = graph.set_follow(session, actor, user_id, following)
        session.commit()
        return jsonable_encoder(result)
    finally:
        session.close()


@app.post("/users/{user_id}/follow")
def follow_user(user_id: UUID, x_user_id: Optional[str] = Header(default=None)) -> dict:
    return _follow(user_id, x_user_id, True)


@app.delete("/users/{user_id}/follow")
def unfollow_user(user_id: UUID, x_user_id: Optional[str] = Header(default=None)) -> dict:
    return _follow(user_id, x_user_id, False)


@app.get("/users/{user_id}/followers")
def list_followers(
    user_id: UUID,
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> List[dict]:
    limit, offset = _paginate(limit, offset)
    session = SessionLocal()
    try:
        rows = graph.list_followers(session, user_id, limit=limit, offset=offset)
        return jsonable_encoder([_user_row(row) for row in rows])
    finally:
        session.close()


@app.get("/users/{user_id}/following")
def list_following(
    user_id: UUID,
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> List[dict]:
    limit, offset = _paginate(limit, offset)
    session = SessionLocal()
    try:
        rows = graph.list_following(session, user_id, limit=limit, offset=offset)
        return jsonable_encoder([_user_row(row) for row in rows])
    finally:
        session.close()


def _like(portfolio_id: UUID, x_user_id: str | None, liked: bool) -> dict:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id)
        result = graph.set_like(session, actor, portfolio_id, liked)
        session.commit()
        return jsonable_encoder(result)
    finally:
        session.close()


@app.post("/documents/{portfolio_id}/like")
def like_document(portfolio_id: UUID, x_user_id: Optional[str] = Header(default=None)) -> dict:
    return _like(portfolio_id, x_user_id, True)


@app.delete("/documents/{portfolio_id}/like")
def unlike_document(portfolio_id: UUID, x_user_id: Optional[str] = Header(default=None)) -> dict:
    return _like(portfolio_id, x_user_id, False)


@app.get("/notifications")
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = False,
    x_user_id: Optional[str] = Header(default=None),
) -> dict:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id)
        result = inbox.list_notifications(session, actor, page=page, limit=limit, unread_only=unread_only)
        return jsonable_encoder(
            {"data": [_notification_row(row) for row in result["data"]], "meta": result["meta"]}
        )
    finally:
        session.close()


@app.get("/notifications/count")
def notification_count(x_user_id: Optional[str] = Header(default=None)) -> dict:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id)
        return {"unread_count": inbox.unread_count(session, actor)}
    finally:
        session.close()


@app.post("/notifications/read-all")
def read_all_notifications(x_user_id: Optional[str] = Header(default=None)) -> dict:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id)
        updated = inbox.mark_all_read(session, actor)
        session.commit()
        return {"updated": updated, "unread_count": inbox.unread_count(session, actor)}
    finally:
        session.close()


@app.post("/notifications/{notification_id}/read")
def read_notification(notification_id: UUID, x_user_id: Optional[str] = Header(default=None)) -> dict:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id)
        notification = inbox.mark_read(session, actor, notification_id)
        session.commit()
        payload = jsonable_encoder(_notification_row(notification))
        payload["unread_count"] = inbox.unread_count(session, actor)
        return payload
    finally:
        session.close()


@app.delete("/notifications/{notification_id}")
def delete_notification(notification_id: UUID, x_user_id: Optional[str] = Header(default=None)) -> dict:
    session = SessionLocal()
    try:
        actor = _current_actor(session, x_user_id)
        inbox.delete_notification(session, actor, notification_id)
        session.commit()
        return {"id": str(notification_id), "deleted": True, "unread_count": inbox.unread_count(session, actor)}
    finally:
        session.close()
