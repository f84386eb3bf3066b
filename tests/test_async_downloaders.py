"""Unit tests for depradar.async_downloaders — the aiohttp feed client."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from depradar.async_downloaders import AiohttpFeedClient, client_timeout
from depradar.config import SyncConfig
from depradar.errors import FeedFetchError, RateLimitedError


def _client(resp=None, error: Exception | None = None) -> tuple[AiohttpFeedClient, MagicMock]:
    mock_session = AsyncMock()
    if error is not None:
        mock_session.get = MagicMock(side_effect=error)
    else:
        mock_session.get = MagicMock(return_value=AsyncContextManager(resp))
    return AiohttpFeedClient(mock_session), mock_session


def _resp(status: int = 200, text: str = "", body: bytes = b"", headers=None) -> AsyncMock:
    mock_resp = AsyncMock()
    mock_resp.status = status
    mock_resp.headers = headers or {}
    mock_resp.text = AsyncMock(return_value=text)
    mock_resp.read = AsyncMock(return_value=body)
    return mock_resp


# ── client_timeout ───────────────────────────────────────────────────────────


class TestClientTimeout:
    def test_uses_config(self):
        t = client_timeout(SyncConfig(connect_timeout=5, read_timeout=60))
        assert t.sock_connect == 5
        assert t.sock_read == 60


# ── AiohttpFeedClient ────────────────────────────────────────────────────────


class TestFetch:
    def test_fetch_text(self):
        client, session = _client(_resp(text="size:1\n"))
        assert asyncio.run(client.fetch_text("https://x/a.meta")) == "size:1\n"
        session.get.assert_called_once_with("https://x/a.meta")

    def test_fetch_bytes(self):
        client, _ = _client(_resp(body=b"\x1f\x8b"))
        assert asyncio.run(client.fetch_bytes("https://x/a.json.gz")) == b"\x1f\x8b"

    def test_bad_status(self):
        client, _ = _client(_resp(status=500))
        with pytest.raises(FeedFetchError) as exc:
            asyncio.run(client.fetch_bytes("https://x/a.json.gz"))
        assert exc.value.status == 500
        assert exc.value.retryable

    def test_rate_limited(self):
        client, _ = _client(_resp(status=429, headers={"Retry-After": "120"}))
        with pytest.raises(RateLimitedError) as exc:
            asyncio.run(client.fetch_text("https://x/a.meta"))
        assert exc.value.retry_after == 120.0

    def test_connection_error_mapped(self):
        client, _ = _client(error=aiohttp.ClientConnectionError("refused"))
        with pytest.raises(FeedFetchError) as exc:
            asyncio.run(client.fetch_text("https://x/a.meta"))
        assert exc.value.url == "https://x/a.meta"

    def test_timeout_mapped(self):
        client, _ = _client(error=asyncio.TimeoutError())
        with pytest.raises(FeedFetchError):
            asyncio.run(client.fetch_bytes("https://x/a.json.gz"))


class TestOpen:
    def test_session_closed_on_exit(self):
        async def run():
            async with AiohttpFeedClient.open(SyncConfig()) as client:
                session = client.session
                assert not session.closed
            return session

        assert asyncio.run(run()).closed


# ── Helper for async context manager mocking ────────────────────────────────


class AsyncContextManager:
    """Wraps an async mock to support `async with session.get(url) as resp:`."""

    def __init__(self, mock_resp):
        self.mock_resp = mock_resp

    async def __aenter__(self):
        return self.mock_resp

    async def __aexit__(self, *args):
        return False
