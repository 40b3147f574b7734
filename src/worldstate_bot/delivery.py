"""
Delivery targets.

``DeliveryTarget`` is the contract the reconciler talks to; ``DiscordDelivery``
implements it against the Discord REST API with a bot token. Payloads are plain
Discord message dicts (``content``, ``embeds``, ``allowed_mentions``).
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aiohttp

from .errors import DeliveryError, MessageNotFoundError
from .logging_utils import get_logger

log = get_logger("delivery")

DISCORD_API_BASE = "https://discord.com/api/v10"


class DeliveryTarget(ABC):
    @abstractmethod
    async def send_message(self, channel_id: str, payload: Dict[str, Any]) -> str:
        """Post a new message and return its reference."""

    @abstractmethod
    async def edit_message(
        self, channel_id: str, message_ref: str, payload: Dict[str, Any]
    ) -> None:
        """Replace an existing message. Raises MessageNotFoundError if it is gone."""

    @abstractmethod
    async def delete_message(self, channel_id: str, message_ref: str) -> None:
        """Delete a message."""

    async def close(self) -> None:
        return None


def _retry_after_seconds(headers: Any) -> float:
    wait = headers.get("X-RateLimit-Reset-After") or headers.get("Retry-After") or 1.0
    try:
        wait = float(wait)
    except (TypeError, ValueError):
        return 1.0
    # If a proxy sends ms, scale to seconds
    if wait > 1000:
        wait = wait / 1000.0
    return min(max(wait, 0.5), 5.0)


class DiscordDelivery(DeliveryTarget):
    def __init__(
        self,
        token: str,
        api_base: str = DISCORD_API_BASE,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_seconds: float = 10.0,
    ):
        self.api_base = api_base.rstrip("/")
        self._headers = {
            "Authorization": f"Bot {token}",
            "Content-Type": "application/json",
        }
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def _request(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Header-aware request with a single retry on 429.

        Returns the decoded JSON body (None for 204).
        """
        url = f"{self.api_base}{path}"
        session = self._get_session()
        for attempt in (1, 2):
            try:
                async with session.request(
                    method, url, headers=self._headers, json=payload
                ) as resp:
                    if resp.status == 429 and attempt == 1:
                        wait = _retry_after_seconds(resp.headers)
                        log.warning("discord_rate_limited path=%s wait=%.2f", path, wait)
                        await asyncio.sleep(wait)
                        continue
                    if resp.status == 204:
                        return None
                    if 200 <= resp.status < 300:
                        return await resp.json(content_type=None)
                    error_text = await resp.text()
                    if resp.status == 404:
                        raise MessageNotFoundError(
                            f"{method} {path} not found: {error_text[:200]}",
                            status=404,
                        )
                    raise DeliveryError(
                        f"{method} {path} failed status={resp.status}: {error_text[:200]}",
                        status=resp.status,
                    )
            except asyncio.TimeoutError as e:
                raise DeliveryError(f"{method} {path} timed out") from e
            except aiohttp.ClientError as e:
                raise DeliveryError(f"{method} {path} http error: {e}") from e
        raise DeliveryError(f"{method} {path} still rate limited", status=429)

    async def send_message(self, channel_id: str, payload: Dict[str, Any]) -> str:
        data = await self._request("POST", f"/channels/{channel_id}/messages", payload)
        if not data or "id" not in data:
            raise DeliveryError(f"send to channel {channel_id} returned no message id")
        return str(data["id"])

    async def edit_message(
        self, channel_id: str, message_ref: str, payload: Dict[str, Any]
    ) -> None:
        await self._request(
            "PATCH", f"/channels/{channel_id}/messages/{message_ref}", payload
        )

    async def delete_message(self, channel_id: str, message_ref: str) -> None:
        await self._request("DELETE", f"/channels/{channel_id}/messages/{message_ref}")

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
