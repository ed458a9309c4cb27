"""Typed payloads for content blocks.

Each block kind maps to exactly one payload model; validation and rendering
dispatch on the kind tag, never on which fields happen to be present.
"""
from __future__ import annotations

import re
from enum import Enum
from typing import Any, Dict, List, Optional, Type
from urllib.parse import parse_qs, urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
from pydantic import field_validator, model_validator

from portfolios.errors import ValidationError

from .sanitize import clean_embed_html, clean_text_html


class BlockKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    TABLE = "table"
    VIDEO_EMBED = "video_embed"
    LINK_BUTTON = "link_button"
    RAW_EMBED = "raw_embed"


_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")


def _require_http_url(value: str) -> str:
    value = value.strip()
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("must be an absolute http(s) URL")
    return value


def extract_video_id(value: str) -> str:
    """Accept a bare YouTube id or any of the common watch/share URLs."""
    value = value.strip()
    if _VIDEO_ID_RE.match(value):
        return value
    parsed = urlparse(value)
    host = (parsed.hostname or "").lower()
    candidate = ""
    if host.endswith("youtu.be"):
        candidate = parsed.path.lstrip("/").split("/")[0]
    elif host.endswith("youtube.com") or host.endswith("youtube-nocookie.com"):
        if parsed.path == "/watch":
            candidate = (parse_qs(parsed.query).get("v") or [""])[0]
        else:
            parts = [part for part in parsed.path.split("/") if part]
            if len(parts) >= 2 and parts[0] in {"embed", "shorts", "live", "v"}:
                candidate = parts[1]
    if not _VIDEO_ID_RE.match(candidate):
        raise ValueError("not a recognizable video id")
    return candidate


class TextPayload(BaseModel):
    content: str = Field(min_length=1)

    model_config = ConfigDict(extra="forbid")

    @field_validator("content")
    @classmethod
    def _clean_content(cls, value: str) -> str:
        cleaned = clean_text_html(value)
        if not cleaned:
            raise ValueError("text has no content left after removing disallowed markup")
        return cleaned


class ImagePayload(BaseModel):
    url: str
    caption: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        return _require_http_url(value)


class TablePayload(BaseModel):
    headers: List[str] = Field(min_length=1)
    rows: List[List[str]]

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_shape(self) -> "TablePayload":
        width = len(self.headers)
        for index, row in enumerate(self.rows):
            if len(row) != width:
                raise ValueError(f"rows[{index}] has {len(row)} cells, expected {width}")
        return self


class VideoEmbedPayload(BaseModel):
    video_id: str
    title: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("video_id")
    @classmethod
    def _check_video_id(cls, value: str) -> str:
        return extract_video_id(value)


class LinkButtonPayload(BaseModel):
    text: str = Field(min_length=1)
    url: str

    model_config = ConfigDict(extra="forbid")

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        return _require_http_url(value)


class RawEmbedPayload(BaseModel):
    html: str = Field(min_length=1)
    title: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("html")
    @classmethod
    def _clean_html(cls, value: str) -> str:
        cleaned = clean_embed_html(value)
        if not cleaned:
            raise ValueError("embed html has no content left after removing disallowed markup")
        return cleaned


PAYLOAD_MODELS: Dict[BlockKind, Type[BaseModel]] = {
    BlockKind.TEXT: TextPayload,
    BlockKind.IMAGE: ImagePayload,
    BlockKind.TABLE: TablePayload,
    BlockKind.VIDEO_EMBED: VideoEmbedPayload,
    BlockKind.LINK_BUTTON: LinkButtonPayload,
    BlockKind.RAW_EMBED: RawEmbedPayload,
}


def parse_kind(kind: str | BlockKind) -> BlockKind:
    try:
        return BlockKind(kind)
    except ValueError as exc:
        raise ValidationError("unknown_block_kind", f"unknown block kind: {kind}") from exc


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(item) for item in error.get("loc", ())) or "payload"
        parts.append(f"{loc}: {error.get('msg')}")
    return "; ".join(parts)


def validate_payload(kind: str | BlockKind, payload: Dict[str, Any] | None) -> Dict[str, Any]:
    """Validate ``payload`` against the model for ``kind`` and return it normalized."""
    block_kind = parse_kind(kind)
    if not isinstance(payload, dict):
        raise ValidationError("invalid_block_payload", "payload must be an object")
    try:
        model = PAYLOAD_MODELS[block_kind].model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError("invalid_block_payload", _describe(exc)) from exc
    return model.model_dump(exclude_none=True)
