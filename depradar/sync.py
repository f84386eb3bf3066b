"""NVD feed synchronization pipeline.

Keeps the local store in step with the NVD JSON 2.0 feed.  The feed is
split into one base shard per year plus a rolling ``modified`` shard; each
shard has a ``.meta`` descriptor that is fetched first so unchanged shards
are never downloaded.

Per shard the stages are download (with size and hash verification), parse
and merge.  Shards run concurrently on an asyncio loop bounded by
``sync.max_download_workers``; parsing and merging run in worker threads.
The modified shard always runs after every base shard finished.

Usage from synchronous code::

    from depradar.sync import NvdSynchronizer
    report = NvdSynchronizer(store, settings).synchronize()
    if report.failed:
        print(f"Failed shards: {sorted(report.failed)}")
"""

from __future__ import annotations

import asyncio
import datetime as dt
import gzip
import hashlib
import json
import logging
import zlib
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from .async_downloaders import AiohttpFeedClient, FeedClient
from .config import Settings
from .downloaders import is_retryable
from .errors import DepRadarError, IntegrityError, SyncStateError, UpdateError
from .parsers import FeedMeta, FeedParseResult, parse_feed, parse_meta
from .store import MODIFIED_SHARD_ID, CveStore, base_shard_id
from .sync_state import SCHEMA_VERSION, SyncState
from .version_check import EngineVersionCheck

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], AbstractAsyncContextManager[FeedClient]]


@dataclass(frozen=True)
class Shard:
    """One feed file and its descriptor."""

    id: str
    payload_url: str
    meta_url: str

    @property
    def is_modified(self) -> bool:
        return self.id == MODIFIED_SHARD_ID

    @classmethod
    def for_id(cls, base_url: str, shard_id: str) -> "Shard":
        base = base_url.rstrip("/")
        return cls(shard_id, f"{base}/{shard_id}.json.gz", f"{base}/{shard_id}.meta")


@dataclass
class SyncReport:
    """Outcome of one ``synchronize()`` call.

    Attributes:
        ran: False when the run was skipped (disabled or checked recently).
        reason: Why the run was skipped or a resync was forced.
        forced: Every shard's stored state was ignored.
        checked: Shards whose descriptor was consulted.
        updated: Shards downloaded and merged, in merge order.
        skipped: Shards whose descriptor matched the stored state.
        failed: Shard id → error, for shards left at their previous state.
        downloads: Payload downloads performed (retries included).
    """

    ran: bool = True
    reason: str | None = None
    forced: bool = False
    checked: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, DepRadarError] = field(default_factory=dict)
    downloads: int = 0

    @property
    def succeeded(self) -> bool:
        return not self.failed


def plan_shards(settings: Settings, now: dt.datetime) -> list[Shard]:
    """All shards in processing order: base years ascending, modified last."""
    cfg = settings.sync
    end_year = cfg.end_year or now.year
    shards = [Shard.for_id(cfg.feed_base_url, base_shard_id(y)) for y in range(cfg.start_year, end_year + 1)]
    shards.append(Shard.for_id(cfg.feed_base_url, MODIFIED_SHARD_ID))
    return shards


def verify_payload(shard_id: str, raw: bytes, meta: FeedMeta) -> bytes:
    """Check a gzip payload against its descriptor and decompress it.

    Raises:
        IntegrityError: on a size or hash mismatch or a corrupt archive.
    """
    if meta.gz_size is not None and len(raw) != meta.gz_size:
        raise IntegrityError.size_mismatch(shard_id, "gzSize", meta.gz_size, len(raw))
    try:
        data = gzip.decompress(raw)
    except (OSError, EOFError, zlib.error) as e:
        raise IntegrityError.unrecognized_structure(shard_id, f"payload is not valid gzip: {e}") from e
    if len(data) != meta.size:
        raise IntegrityError.size_mismatch(shard_id, "size", meta.size, len(data))
    actual = hashlib.sha256(data).hexdigest()
    if actual != meta.sha256:
        raise IntegrityError.hash_mismatch(shard_id, meta.sha256, actual)
    return data


def decode_feed(shard_id: str, data: bytes) -> FeedParseResult:
    """Decode verified feed JSON into records.

    Raises:
        IntegrityError: if the JSON is invalid or not a feed document.
    """
    try:
        document = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise IntegrityError.unrecognized_structure(shard_id, f"payload is not JSON: {e}") from e
    return parse_feed(document, shard_id)


class NvdSynchronizer:
    """Runs the synchronization pipeline against one store.

    Args:
        store: Local store to update.
        settings: Sync, lock and data directory settings.
        client_factory: Returns an async context manager yielding a
            ``FeedClient``; defaults to an aiohttp-backed client.
        version_check: Engine version gate; defaults to one built from
            ``settings.sync``.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        store: CveStore,
        settings: Settings,
        client_factory: ClientFactory | None = None,
        version_check: EngineVersionCheck | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ):
        self.store = store
        self.settings = settings
        self.config = settings.sync
        self.client_factory = client_factory or (lambda: AiohttpFeedClient.open(self.config))
        self.version_check = version_check or EngineVersionCheck(self.config)
        self.clock = clock or (lambda: dt.datetime.now(dt.timezone.utc))

    def synchronize(self) -> SyncReport:
        """Synchronous wrapper around :meth:`synchronize_async`."""
        return asyncio.run(self.synchronize_async())

    # ── Helpers ─────────────────────────────────────────────────────────────

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.config.retry_attempts),
            wait=wait_exponential(multiplier=1, max=self.config.retry_wait_max),
            retry=retry_if_exception(is_retryable),
            reraise=True,
        )

    async def _with_retry(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        async for attempt in self._retrying():
            with attempt:
                return await fn()

    def _stored_state(self, shard_id: str) -> SyncState | None:
        try:
            return self.store.states.load(shard_id)
        except SyncStateError as e:
            logger.warning(f"Ignoring unreadable sync state for {shard_id}: {e.message}")
            return None

    @staticmethod
    def _needs_update(state: SyncState | None, meta: FeedMeta) -> bool:
        if state is None or state.schema_version < SCHEMA_VERSION:
            return True
        return state.differs_from(meta.last_modified, meta.sha256, meta.size)

    async def _fetch_meta(self, client: FeedClient, shard: Shard) -> FeedMeta:
        text = await self._with_retry(lambda: client.fetch_text(shard.meta_url))
        return parse_meta(text, shard.id)

    async def _update_shard(self, client: FeedClient, shard: Shard, meta: FeedMeta, report: SyncReport) -> None:
        async def download() -> bytes:
            report.downloads += 1
            return await client.fetch_bytes(shard.payload_url)

        logger.info(f"Downloading {shard.id}")
        raw = await self._with_retry(download)
        data = await asyncio.to_thread(verify_payload, shard.id, raw, meta)
        parsed = await asyncio.to_thread(decode_feed, shard.id, data)
        state = SyncState(shard.id, meta.last_modified, meta.sha256, meta.size, SCHEMA_VERSION)
        await self._with_retry(
            lambda: asyncio.to_thread(self.store.merge_shard, shard.id, parsed.records, state)
        )
        if parsed.skipped:
            logger.warning(f"{shard.id}: skipped {len(parsed.skipped)} malformed record(s)")
        report.updated.append(shard.id)

    def _record_failure(self, report: SyncReport, shard: Shard, error: BaseException) -> None:
        if isinstance(error, DepRadarError):
            failure = error
        else:
            logger.exception(f"Unexpected error while synchronizing {shard.id}", exc_info=error)
            failure = UpdateError(f"{shard.id}: {error!r}", "SHARD_FAILED")
            failure.__cause__ = error
        logger.warning(f"Shard {shard.id} failed, keeping previous data: {failure.message}")
        report.failed[shard.id] = failure

    # ── Pipeline ────────────────────────────────────────────────────────────

    def _skip_reason(self, last_checked: dt.datetime | None, now: dt.datetime) -> str | None:
        hours = self.config.check_valid_for_hours
        if hours <= 0 or last_checked is None or not self.store.has_data():
            return None
        if now - last_checked < dt.timedelta(hours=hours):
            return f"last complete check at {last_checked.isoformat()} is within {hours}h"
        return None

    def _base_shards_to_check(self, base: list[Shard], last_checked: dt.datetime | None, forced: bool, now: dt.datetime) -> list[Shard]:
        days = self.config.modified_valid_for_days
        recent = last_checked is not None and now - last_checked < dt.timedelta(days=days)
        if forced or not recent or not self.store.has_data():
            return base
        # the modified shard covers recent changes; only never-synchronized years need a look
        return [s for s in base if self._stored_state(s.id) is None]

    async def synchronize_async(self) -> SyncReport:
        """Bring the store up to date with the remote feed.

        Returns:
            ``SyncReport`` describing what was checked, updated and failed.
        """
        report = SyncReport()
        if not self.config.enabled:
            report.ran = False
            report.reason = "synchronization disabled"
            return report

        now = self.clock()
        props = self.store.load_properties()
        gate = self.version_check.evaluate(props, self.store.has_data(), now)
        report.forced = gate.force_resync
        last_checked = props.get_datetime("last_checked")

        if not report.forced:
            skip = self._skip_reason(last_checked, now)
            if skip:
                logger.info(f"Skipping NVD update check: {skip}")
                report.ran = False
                report.reason = skip
                if "version_checked_on" in gate.properties:
                    self.store.update_properties({"version_checked_on": gate.properties["version_checked_on"]})
                return report
        else:
            report.reason = gate.reason

        shards = plan_shards(self.settings, now)
        base, modified = shards[:-1], shards[-1]
        to_check = self._base_shards_to_check(base, last_checked, report.forced, now)
        semaphore = asyncio.Semaphore(self.config.max_download_workers)
        base_changed = False

        async with self.client_factory() as client:

            async def run_base(shard: Shard) -> None:
                nonlocal base_changed
                async with semaphore:
                    try:
                        meta = await self._fetch_meta(client, shard)
                        report.checked.append(shard.id)
                        if not report.forced and not self._needs_update(self._stored_state(shard.id), meta):
                            report.skipped.append(shard.id)
                            return
                        base_changed = True
                        await self._update_shard(client, shard, meta, report)
                    except Exception as e:
                        self._record_failure(report, shard, e)

            await asyncio.gather(*(run_base(s) for s in to_check))

            try:
                meta = await self._fetch_meta(client, modified)
                report.checked.append(modified.id)
                # after a base change the delta must be reapplied on top
                if report.forced or base_changed or self._needs_update(self._stored_state(modified.id), meta):
                    await self._update_shard(client, modified, meta, report)
                else:
                    report.skipped.append(modified.id)
            except Exception as e:
                self._record_failure(report, modified, e)

        if report.succeeded:
            values = dict(gate.properties)
            values["last_checked"] = now.isoformat()
            self.store.update_properties(values)
        elif "version_checked_on" in gate.properties:
            self.store.update_properties({"version_checked_on": gate.properties["version_checked_on"]})

        logger.info(
            f"NVD synchronization finished: {len(report.updated)} updated, "
            f"{len(report.skipped)} unchanged, {len(report.failed)} failed"
        )
        return report
