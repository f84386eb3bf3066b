"""Synchronous HTTP helpers.

Used for small one-off requests (release checks) where an event loop
would be overkill.  Feed shards are fetched by ``async_downloaders``.
HTTP failures are mapped onto the DepRadar error taxonomy here so callers
never see ``requests`` exceptions.
"""

import logging
import os
from typing import Any, Mapping

import requests
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from . import __version__
from .errors import DepRadarError, FeedFetchError, RateLimitedError

logger = logging.getLogger(__name__)

USER_AGENT = f"DepRadar/{__version__} (+https://github.com/)"
DEFAULT_HTTP_TIMEOUT = (10, 120)  # (connect, read)


def requests_session() -> requests.Session:
    """Create a configured requests session with auth and headers.

    Automatically picks up ``GITHUB_TOKEN`` or ``GH_TOKEN`` from env, for
    release checks against the GitHub API.

    Returns:
        Configured ``requests.Session``.
    """
    s = requests.Session()
    s.headers.update(
        {
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        }
    )
    token = os.environ.get("GITHUB_TOKEN") or os.environ.get("GH_TOKEN")
    if token:
        s.headers["Authorization"] = f"Bearer {token}"
    return s


def parse_retry_after(value: str | None) -> float | None:
    """Seconds from a ``Retry-After`` header; HTTP dates are not supported."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def check_status(url: str, status: int, headers: Mapping[str, str] | None = None) -> None:
    """Raise the matching error for a non-2xx status.

    Raises:
        RateLimitedError: on 429.
        FeedFetchError: on any other status outside 200–299.
    """
    if 200 <= status < 300:
        return
    if status == 429:
        retry_after = parse_retry_after((headers or {}).get("Retry-After"))
        logger.warning(f"Rate limited by {url} (retry after {retry_after}s)")
        raise RateLimitedError(url, retry_after)
    raise FeedFetchError.bad_status(url, status)


def is_retryable(exc: BaseException) -> bool:
    """Whether tenacity should try again after ``exc``."""
    return isinstance(exc, DepRadarError) and exc.retryable


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=30),
    retry=retry_if_exception(is_retryable),
    reraise=True,
)
def get_json(session: requests.Session, url: str) -> Any:
    """Fetch JSON from a URL with retry logic.

    Args:
        session: Requests session.
        url: URL to fetch.

    Returns:
        Parsed JSON data.

    Raises:
        FeedFetchError: on connection errors or a bad status.
        RateLimitedError: on 429 (not retried).
    """
    try:
        r = session.get(url, timeout=DEFAULT_HTTP_TIMEOUT)
    except requests.RequestException as e:
        raise FeedFetchError(f"GET {url} failed: {e}", url=url) from e
    check_status(url, r.status_code, r.headers)
    return r.json()


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=30),
    retry=retry_if_exception(is_retryable),
    reraise=True,
)
def get_text(session: requests.Session, url: str) -> str:
    """Fetch a text document from a URL with retry logic.

    Args:
        session: Requests session.
        url: URL to fetch.

    Returns:
        Response body decoded as text.
    """
    try:
        r = session.get(url, timeout=DEFAULT_HTTP_TIMEOUT, headers={"Accept": "*/*"})
    except requests.RequestException as e:
        raise FeedFetchError(f"GET {url} failed: {e}", url=url) from e
    check_status(url, r.status_code, r.headers)
    return r.text


def fetch_latest_release(session: requests.Session, url: str) -> str | None:
    """Resolve the latest published release version.

    ``url`` may point at the GitHub "latest release" API (the ``tag_name``
    is used) or at a plain text file whose first line is the version.

    Returns:
        Version string without a leading ``v``, or None if empty.
    """
    if "api.github.com" in url:
        data = get_json(session, url)
        tag = str((data or {}).get("tag_name") or "").strip()
    else:
        lines = get_text(session, url).strip().splitlines()
        tag = lines[0].strip() if lines else ""
    if tag[:1] in ("v", "V"):
        tag = tag[1:]
    return tag or None
