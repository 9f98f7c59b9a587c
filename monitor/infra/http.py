"""
http.py – Async HTTP client built on *aiohttp* that turns non-2xx responses
          into ``APIError`` and can optionally retry 429 / 5xx itself.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Mapping, Optional, Tuple

import aiohttp

from ..exceptions import APIError

logger = logging.getLogger(__name__)

RETRY_STATUSES: Tuple[int, ...] = (429, 500, 502, 503, 504)


def parse_retry_after(header_val: Optional[str]) -> Optional[float]:
    """Return seconds given a Retry-After header value."""
    if not header_val:
        return None
    header_val = header_val.strip()
    # seconds
    if header_val.isdigit():
        return float(header_val)
    # HTTP-date
    try:
        retry_at = parsedate_to_datetime(header_val)
    except (TypeError, ValueError):
        return None
    return max(0.0, retry_at.timestamp() - time.time())


class HttpClient:
    """
    Thin wrapper over *aiohttp.ClientSession* adding:

    * per-instance default headers (keeps user-agent and auth in one place)
    * per-request timeouts
    * ``APIError`` (status, message, body) for every non-2xx response
    * optional transport-level retries honouring *Retry-After*
    * async context-manager support
    """

    def __init__(
        self,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        max_retries: int = 0,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        default_headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._external_session = session
        self._timeout = timeout
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._own_session: Optional[aiohttp.ClientSession] = None
        self._default_headers: Dict[str, str] = dict(default_headers or {})

    # ---------------------------------------------- #
    # Async context-manager
    async def __aenter__(self) -> "HttpClient":  # noqa: D401
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        await self.close()

    # ---------------------------------------------- #
    # Session management
    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._external_session:
            return self._external_session
        if self._own_session is None or self._own_session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._own_session = aiohttp.ClientSession(timeout=timeout)
        return self._own_session

    async def close(self) -> None:
        if self._own_session and not self._own_session.closed:
            await self._own_session.close()
            self._own_session = None

    # ---------------------------------------------- #
    # Internal helpers
    def _merge_headers(self, extra: Optional[Mapping[str, str]]) -> Dict[str, str]:
        merged: Dict[str, str] = {**self._default_headers}
        if extra:
            merged.update(extra)
        return merged

    def _backoff(self, attempt: int, retry_after: Optional[float]) -> float:
        if retry_after is not None:
            return min(retry_after, self._max_delay)
        exponential = min(self._base_delay * 2 ** (attempt - 1), self._max_delay)
        return exponential + random.uniform(0, self._base_delay)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> Tuple[int, Any]:
        """Perform a request; returns (status, decoded JSON or text body)."""
        session = await self._ensure_session()
        kwargs["headers"] = self._merge_headers(kwargs.pop("headers", None))
        if timeout is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)

        attempts = self._max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                async with session.request(method, url, **kwargs) as resp:
                    body = await resp.text()
                    if 200 <= resp.status < 300:
                        return resp.status, _decode(body, resp.content_type)

                    error = APIError(resp.status, resp.reason or "", body[:500])
                    retry_after = parse_retry_after(resp.headers.get("Retry-After"))
            except aiohttp.ClientConnectionError as e:
                if attempt == attempts:
                    raise
                error, retry_after = e, None

            if isinstance(error, APIError) and (error.status_code not in RETRY_STATUSES or attempt == attempts):
                logger.error(f"HTTP {method} {url} failed with status {error.status_code}")
                raise error

            sleep_seconds = self._backoff(attempt, retry_after)
            logger.warning(
                f"HTTP {method} {url} failed (attempt {attempt}/{attempts} – will retry in "
                f"{sleep_seconds:.1f}s): {str(error).splitlines()[0]}"
            )
            await asyncio.sleep(sleep_seconds)

        # Should never hit here
        raise RuntimeError("Unreachable retry loop")

    # ---------------------------------------------- #
    # Public helpers
    async def get_json(self, url: str, **kwargs) -> Any:
        _, body = await self._request("GET", url, **kwargs)
        return body

    async def post_json(self, url: str, data: Any, **kwargs) -> Any:
        kwargs["json"] = data
        _, body = await self._request("POST", url, **kwargs)
        return body

    # ---------------------------------------------- #
    # Mutators
    def set_default_header(self, key: str, value: str) -> None:
        self._default_headers[key] = value


def _decode(body: str, content_type: str) -> Any:
    if not body:
        return None
    if "json" in (content_type or ""):
        return json.loads(body)
    return body
