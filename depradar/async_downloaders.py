"""Async HTTP client for NVD feed shards.

Uses ``aiohttp`` so several shard descriptors and payloads can be in flight
at once.  The synchronization pipeline only depends on the small
``FeedClient`` protocol, so tests substitute an in-memory fake.

Usage::

    async with AiohttpFeedClient.open(settings.sync) as client:
        meta_text = await client.fetch_text(url)
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Protocol

import aiohttp

from .config import SyncConfig
from .downloaders import USER_AGENT, check_status
from .errors import FeedFetchError

logger = logging.getLogger(__name__)


class FeedClient(Protocol):
    """What the synchronization pipeline needs from an HTTP client."""

    async def fetch_text(self, url: str) -> str: ...

    async def fetch_bytes(self, url: str) -> bytes: ...


def client_timeout(config: SyncConfig) -> aiohttp.ClientTimeout:
    return aiohttp.ClientTimeout(sock_connect=config.connect_timeout, sock_read=config.read_timeout)


class AiohttpFeedClient:
    """``FeedClient`` backed by an ``aiohttp.ClientSession``.

    Attributes:
        session: Open client session (owned by the caller unless created
            through :meth:`open`).
    """

    def __init__(self, session: aiohttp.ClientSession):
        self.session = session

    @classmethod
    @asynccontextmanager
    async def open(cls, config: SyncConfig) -> AsyncIterator["AiohttpFeedClient"]:
        """Create a client with its own session, closed on exit."""
        headers = {"User-Agent": USER_AGENT, "Accept": "*/*"}
        async with aiohttp.ClientSession(headers=headers, timeout=client_timeout(config)) as session:
            yield cls(session)

    async def _get(self, url: str, as_text: bool) -> str | bytes:
        try:
            async with self.session.get(url) as resp:
                check_status(url, resp.status, resp.headers)
                if as_text:
                    return await resp.text()
                return await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FeedFetchError(f"GET {url} failed: {e!r}", url=url) from e

    async def fetch_text(self, url: str) -> str:
        """Fetch a descriptor (or any small text document)."""
        text = await self._get(url, as_text=True)
        logger.debug(f"Fetched {url} ({len(text)} chars)")
        return text

    async def fetch_bytes(self, url: str) -> bytes:
        """Fetch a payload as raw bytes."""
        raw = await self._get(url, as_text=False)
        logger.debug(f"Fetched {url} ({len(raw) / 1024 / 1024:.1f} MB)")
        return raw
