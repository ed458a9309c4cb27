from __future__ import annotations

from html import escape
from typing import Callable, Dict, Iterable

from db.models import ContentBlock

from .sanitize import clean_embed_html, clean_text_html
from .schema import BlockKind, parse_kind


def _text(payload: dict) -> str:
    return f'<div class="block-text">{clean_text_html(payload["content"])}</div>'


def _image(payload: dict) -> str:
    caption = payload.get("caption")
    alt = escape(caption or "", quote=True)
    html = f'<figure class="block-image"><img src="{escape(payload["url"], quote=True)}" alt="{alt}">'
    if caption:
        html += f"<figcaption>{escape(caption)}</figcaption>"
    return html + "</figure>"


def _table(payload: dict) -> str:
    head = "".join(f"<th>{escape(cell)}</th>" for cell in payload["headers"])
    body = "".join(
        "<tr>" + "".join(f"<td>{escape(cell)}</td>" for cell in row) + "</tr>"
        for row in payload["rows"]
    )
    return f'<table class="block-table"><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>'


def _video_embed(payload: dict) -> str:
    title = escape(payload.get("title") or "Video", quote=True)
    src = f"https://www.youtube.com/embed/{escape(payload['video_id'], quote=True)}"
    return (
        f'<div class="block-video"><iframe src="{src}" title="{title}" '
        'allowfullscreen loading="lazy"></iframe></div>'
    )


def _link_button(payload: dict) -> str:
    href = escape(payload["url"], quote=True)
    return (
        f'<a class="block-button" href="{href}" target="_blank" rel="noopener noreferrer">'
        f"{escape(payload['text'])}</a>"
    )


def _raw_embed(payload: dict) -> str:
    html = f'<div class="block-embed">{clean_embed_html(payload["html"])}</div>'
    if payload.get("title"):
        html += f'<p class="block-embed-title">{escape(payload["title"])}</p>'
    return html


RENDERERS: Dict[BlockKind, Callable[[dict], str]] = {
    BlockKind.TEXT: _text,
    BlockKind.IMAGE: _image,
    BlockKind.TABLE: _table,
    BlockKind.VIDEO_EMBED: _video_embed,
    BlockKind.LINK_BUTTON: _link_button,
    BlockKind.RAW_EMBED: _raw_embed,
}


def render_block(block: ContentBlock) -> str:
    return RENDERERS[parse_kind(block.block_type)](block.payload or {})


def render_blocks(blocks: Iterable[ContentBlock]) -> str:
    return "\n".join(render_block(block) for block in blocks)
