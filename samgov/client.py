"""
SAM.gov opportunity search client.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from monitor.exceptions import APIError
from monitor.infra.cache import ResponseCache
from monitor.infra.http import HttpClient
from monitor.interfaces import SearchSource
from monitor.models import Record, SearchResponse

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.sam.gov/opportunities/v2/search"
DEFAULT_USER_AGENT = "SAM.gov-Monitor/1.0"


def parse_response(payload: Any) -> SearchResponse:
    """Turn a raw search payload into a SearchResponse, skipping unusable items."""
    if not isinstance(payload, dict):
        raise APIError(502, "malformed search response", str(payload)[:200])

    items: List[Record] = []
    for raw in payload.get("opportunitiesData") or []:
        try:
            items.append(Record.model_validate(raw))
        except ValidationError as e:
            logger.warning(f"Skipping malformed opportunity {raw.get('noticeId', '?') if isinstance(raw, dict) else '?'}: {e}")

    total = payload.get("totalRecords")
    return SearchResponse(total=total if isinstance(total, int) else len(items), items=items)


class SamGovClient(SearchSource):
    """Searches SAM.gov, optionally through a response cache."""

    name = "samgov"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        http: Optional[HttpClient] = None,
        cache: Optional[ResponseCache] = None,
        rate_limit_delay: float = 0.0,
        max_retries: int = 0,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self.cache = cache
        self.rate_limit_delay = rate_limit_delay
        # Transport retries default to zero: every request counts against the daily quota
        self.http = http or HttpClient(
            max_retries=max_retries,
            default_headers={"User-Agent": user_agent, "Accept": "application/json"},
        )
        self._throttle_lock = asyncio.Lock()
        self._last_request = 0.0

    @classmethod
    def from_settings(cls, settings, cache: Optional[ResponseCache] = None) -> "SamGovClient":
        return cls(
            settings.api_key,
            base_url=settings.base_url,
            cache=cache,
            rate_limit_delay=settings.rate_limit_delay,
        )

    async def _throttle(self) -> None:
        if self.rate_limit_delay <= 0:
            return
        async with self._throttle_lock:
            wait = self._last_request + self.rate_limit_delay - time.monotonic()
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_request = time.monotonic()

    async def search(self, params: Dict[str, str], timeout: float) -> SearchResponse:
        if not self.api_key:
            raise APIError(401, "API key is required")

        if self.cache is not None:
            cached = await self.cache.get(params)
            if cached is not None:
                logger.debug("Serving search from cache")
                return parse_response(cached)

        await self._throttle()
        query = {k: v for k, v in params.items() if v}
        query["api_key"] = self.api_key
        payload = await self.http.get_json(self.base_url, params=query, timeout=timeout)

        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as e:
                raise APIError(502, "search response was not JSON", payload[:200]) from e

        response = parse_response(payload)
        if self.cache is not None:
            await self.cache.set(params, payload)
        logger.debug(f"Search returned {len(response.items)} of {response.total} opportunities")
        return response

    async def validate_api_key(self, timeout: float = 30.0) -> None:
        """Make a one-record request; raises APIError when the key is rejected."""
        today = date.today()
        await self.search(
            {
                "limit": "1",
                "postedFrom": (today - timedelta(days=1)).strftime("%m/%d/%Y"),
                "postedTo": today.strftime("%m/%d/%Y"),
            },
            timeout,
        )

    async def close(self) -> None:
        await self.http.close()
        if self.cache is not None:
            await self.cache.close()
