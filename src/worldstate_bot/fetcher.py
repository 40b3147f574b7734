"""
Snapshot fetcher.

One HTTP GET per call against a feed's source, bounded by a total timeout and
identified by a fixed User-Agent. Failures come back as FetchError; retrying is
left to the next scheduler tick.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import aiohttp

from .errors import FetchError
from .logging_utils import get_logger
from .models import FeedSource, RawSnapshot
from .time_utils import now

log = get_logger("fetcher")


class SnapshotFetcher:
    def __init__(
        self,
        user_agent: str = "WorldstateBot/1.0.0",
        timeout_seconds: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.user_agent = user_agent
        self.timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self.user_agent}
            )
            self._owns_session = True
        return self._session

    async def fetch(self, source: FeedSource) -> RawSnapshot:
        """Fetch and decode ``source``. Raises FetchError on any failure."""
        session = self._get_session()
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with session.get(
                source.url,
                headers={"User-Agent": self.user_agent},
                timeout=timeout,
            ) as resp:
                if resp.status < 200 or resp.status >= 300:
                    raise FetchError(
                        f"unexpected status {resp.status}",
                        url=source.url,
                        status=resp.status,
                    )
                if source.fmt == "text":
                    body = await resp.text()
                else:
                    # Upstream serves JSON as text/plain at times.
                    body = await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise FetchError(
                f"timed out after {self.timeout_seconds}s", url=source.url
            ) from e
        except aiohttp.ClientError as e:
            raise FetchError(f"http error: {e}", url=source.url) from e
        except ValueError as e:
            raise FetchError(f"malformed body: {e}", url=source.url) from e

        if body is None or (source.fmt == "json" and not isinstance(body, dict)):
            raise FetchError("malformed body: expected a JSON object", url=source.url)

        log.debug("snapshot_fetched url=%s fmt=%s", source.url, source.fmt)
        return RawSnapshot(url=source.url, body=body, fetched_at=now())

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
