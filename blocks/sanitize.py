"""Allowlist cleaning for the HTML carried by text and raw-embed blocks."""
from __future__ import annotations

from typing import Dict, FrozenSet, Optional
from urllib.parse import urlparse

import nh3

URL_SCHEMES = frozenset({"http", "https", "mailto"})
_URL_ATTRIBUTES = frozenset({"href", "src"})

TEXT_TAGS = frozenset({
    "p", "br", "span", "strong", "em", "b", "i", "u", "s",
    "a", "ul", "ol", "li", "blockquote", "code", "pre", "h2", "h3", "h4",
})
TEXT_ATTRIBUTES: Dict[str, FrozenSet[str]] = {
    "a": frozenset({"href", "title", "target"}),
}

EMBED_TAGS = TEXT_TAGS | frozenset({"div", "figure", "figcaption", "img", "iframe"})
EMBED_ATTRIBUTES: Dict[str, FrozenSet[str]] = {
    **TEXT_ATTRIBUTES,
    "img": frozenset({"src", "alt", "width", "height", "loading"}),
    "iframe": frozenset({
        "src", "title", "width", "height", "allow", "allowfullscreen",
        "frameborder", "loading", "referrerpolicy",
    }),
}


def _absolute_urls_only(tag: str, attribute: str, value: str) -> Optional[str]:
    if attribute not in _URL_ATTRIBUTES:
        return value
    parsed = urlparse(value.strip())
    if parsed.scheme == "mailto" and tag == "a":
        return value
    if parsed.scheme in {"http", "https"} and parsed.netloc:
        return value
    return None


def _clean(html: str, tags: FrozenSet[str], attributes: Dict[str, FrozenSet[str]]) -> str:
    return nh3.clean(
        html,
        tags=set(tags),
        attributes={tag: set(names) for tag, names in attributes.items()},
        attribute_filter=_absolute_urls_only,
        url_schemes=set(URL_SCHEMES),
        link_rel="noopener noreferrer",
        strip_comments=True,
    ).strip()


def clean_text_html(html: str) -> str:
    return _clean(html, TEXT_TAGS, TEXT_ATTRIBUTES)


def clean_embed_html(html: str) -> str:
    return _clean(html, EMBED_TAGS, EMBED_ATTRIBUTES)
