"""
effective_access.clients.http

Shared HTTP helpers for upstream clients.

Responsibilities:
- Send requests and translate transport/HTTP failures into the domain taxonomy.
- Reject bodies that are not JSON objects with the same taxonomy.
- Parse Retry-After hints (delta-seconds or HTTP-date).
"""

from __future__ import annotations

from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from effective_access.domain.errors import RateLimitedError, TransientQueryError, UpstreamError

THROTTLE_STATUSES = frozenset({429, 503, 504})


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return seconds if seconds >= 0 else None
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    delta = (when - (now or datetime.now(tz=UTC))).total_seconds()
    return max(0.0, delta)


def raise_for_upstream(response: httpx.Response, *, service: str) -> None:
    status = response.status_code
    if status < 400:
        return
    if status in THROTTLE_STATUSES:
        raise RateLimitedError(
            f"{service} throttled the request (HTTP {status})",
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )
    if status >= 500:
        raise TransientQueryError(f"{service} returned HTTP {status}")
    raise UpstreamError(f"{service} rejected the request (HTTP {status})", status_code=status)


async def send(
    http: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    service: str,
    **kwargs: Any,
) -> dict[str, Any]:
    try:
        r = await http.request(method, url, **kwargs)
    except httpx.RequestError as e:
        raise TransientQueryError(f"{service} unreachable: {type(e).__name__}") from e
    raise_for_upstream(r, service=service)
    try:
        body = r.json()
    except ValueError as e:
        # Gateways answer maintenance windows with 200 and an HTML page.
        raise TransientQueryError(f"{service} returned a non-JSON body (HTTP {r.status_code})") from e
    if not isinstance(body, dict):
        raise UpstreamError(
            f"{service} returned an unexpected payload ({type(body).__name__})",
            status_code=r.status_code,
        )
    return body


def bearer_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"} if token else {}


# --- Module Notes -----------------------------------------------------------
# 503/504 are treated as throttling: both Graph and ARM use them for load shedding.
