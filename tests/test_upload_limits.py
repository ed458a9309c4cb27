from __future__ import annotations

import pytest

from uploads.limits import load_upload_limits


def test_bundled_limits_cover_every_intended_use() -> None:
    limits = load_upload_limits()

    assert set(limits.uses) == {"avatar", "banner", "thumbnail", "block_image"}
    assert limits.for_use("avatar").max_bytes == 2 * 1024 * 1024
    assert "image/gif" in limits.for_use("block_image").content_types
    assert "image/gif" not in limits.for_use("avatar").content_types


def test_limits_file_and_ttl_override(tmp_path, monkeypatch) -> None:
    path = tmp_path / "limits.yaml"
    path.write_text(
        "url_ttl_seconds: 120\nuses:\n  avatar:\n    max_bytes: 100\n    content_types: [IMAGE/PNG]\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("UPLOAD_LIMITS_FILE", str(path))

    limits = load_upload_limits()
    assert limits.url_ttl_seconds == 120
    assert limits.for_use("avatar").content_types == frozenset({"image/png"})
    assert limits.for_use("banner") is None

    monkeypatch.setenv("UPLOAD_URL_TTL_S", "30")
    assert load_upload_limits(path).url_ttl_seconds == 30


def test_unknown_use_in_limits_file_is_rejected(tmp_path) -> None:
    path = tmp_path / "limits.yaml"
    path.write_text("uses:\n  wallpaper:\n    max_bytes: 1\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_upload_limits(path)
