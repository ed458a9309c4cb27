"""Delivery of upload bytes against a write grant.

The write is one logical operation with interchangeable transports: a direct
PUT to the grant URL, or the same PUT relayed through the API when the caller's
environment blocks the direct route (CORS, egress policy). The broker never
sees which one was used; it only observes the object at confirm time.
"""
from __future__ import annotations

import logging
from typing import Mapping, Protocol, Sequence
from urllib import request as urlrequest
from urllib.error import HTTPError, URLError

from portfolios.errors import UpstreamError

from .storage import WriteGrant

logger = logging.getLogger(__name__)

RELAY_URL_HEADER = "X-Presigned-Url"
DEFAULT_TIMEOUT_S = 60.0


class Transport(Protocol):
    name: str

    def write(self, grant: WriteGrant, data: bytes) -> None: ...


def _put(url: str, method: str, headers: Mapping[str, str], data: bytes, timeout: float) -> int:
    req = urlrequest.Request(url, data=data, method=method)
    for key, value in headers.items():
        req.add_header(key, value)
    req.add_header("Content-Length", str(len(data)))
    with urlrequest.urlopen(req, timeout=timeout) as response:
        return int(response.status)


class DirectTransport:
    name = "direct"

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_S) -> None:
        self.timeout = timeout

    def write(self, grant: WriteGrant, data: bytes) -> None:
        _put(grant.url, grant.method, grant.headers, data, self.timeout)


class RelayTransport:
    name = "relay"

    def __init__(self, relay_url: str, *, auth_headers: Mapping[str, str] | None = None, timeout: float = DEFAULT_TIMEOUT_S) -> None:
        self.relay_url = relay_url
        self.auth_headers = dict(auth_headers or {})
        self.timeout = timeout

    def write(self, grant: WriteGrant, data: bytes) -> None:
        headers = dict(grant.headers)
        headers.update(self.auth_headers)
        headers[RELAY_URL_HEADER] = grant.url
        _put(self.relay_url, "PUT", headers, data, self.timeout)


def relay_write(grant: WriteGrant, data: bytes, *, timeout: float = DEFAULT_TIMEOUT_S) -> None:
    """Server side of the relay: perform the identical write against the store."""
    try:
        DirectTransport(timeout=timeout).write(grant, data)
    except HTTPError as exc:
        raise UpstreamError("object_store_rejected_write", f"store answered {exc.code}") from exc
    except (URLError, OSError) as exc:
        raise UpstreamError("object_store_unreachable", str(exc)) from exc


def deliver(grant: WriteGrant, data: bytes, transports: Sequence[Transport]) -> str:
    """Write ``data`` with the first transport that succeeds and return its name."""
    failures: list[str] = []
    for transport in transports:
        try:
            transport.write(grant, data)
        except (HTTPError, URLError, OSError) as exc:
            logger.warning("upload via %s failed: %s", transport.name, exc)
            failures.append(f"{transport.name}: {exc}")
            continue
        if failures:
            logger.info("upload delivered via %s after fallback", transport.name)
        return transport.name
    raise UpstreamError("upload_delivery_failed", "; ".join(failures) or "no transport configured")
