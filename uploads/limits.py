from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import yaml

DEFAULT_LIMITS_FILE = Path(__file__).resolve().parent / "upload_limits.yaml"
INTENDED_USES = ("avatar", "banner", "thumbnail", "block_image")


@dataclass(frozen=True)
class UseLimit:
    max_bytes: int
    content_types: frozenset[str]


@dataclass(frozen=True)
class UploadLimits:
    url_ttl_seconds: int
    uses: Dict[str, UseLimit]

    def for_use(self, intended_use: str) -> UseLimit | None:
        return self.uses.get(intended_use)


def _parse(raw: Dict[str, Any]) -> UploadLimits:
    uses: Dict[str, UseLimit] = {}
    for name, item in (raw.get("uses") or {}).items():
        if name not in INTENDED_USES:
            raise ValueError(f"unknown intended use in upload limits: {name}")
        uses[name] = UseLimit(
            max_bytes=int(item["max_bytes"]),
            content_types=frozenset(str(ct).lower() for ct in item.get("content_types") or ()),
        )
    ttl = int(os.getenv("UPLOAD_URL_TTL_S", raw.get("url_ttl_seconds", 600)))
    if ttl <= 0:
        raise ValueError("upload url ttl must be > 0")
    return UploadLimits(url_ttl_seconds=ttl, uses=uses)


def load_upload_limits(path: str | Path | None = None) -> UploadLimits:
    path = Path(path or os.getenv("UPLOAD_LIMITS_FILE") or DEFAULT_LIMITS_FILE)
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return _parse(raw)


@lru_cache(maxsize=1)
def get_upload_limits() -> UploadLimits:
    return load_upload_limits()
