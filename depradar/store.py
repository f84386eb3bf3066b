"""Local CVE store.

Layout under the data directory::

    data.lock                 directory lock
    store.properties          store-wide properties
    shards/<shard>.json       records of one feed shard
    state/<shard>.properties  last descriptor applied to that shard

Shard files are replaced wholesale and atomically.  Readers load an
immutable ``StoreSnapshot`` under the shared lock; the synchronization
merge stage writes under the exclusive lock.
"""

import hashlib
import json
import logging
import os
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path

from .config import LockConfig
from .errors import IntegrityError
from .lock import DirectorySpinLock
from .records import CveRecord
from .sync_state import SCHEMA_VERSION, StoreProperties, SyncState, SyncStateStore

logger = logging.getLogger(__name__)

FEED_PREFIX = "nvdcve-2.0"
MODIFIED_SHARD_ID = f"{FEED_PREFIX}-modified"


def base_shard_id(year: int) -> str:
    return f"{FEED_PREFIX}-{year}"


@dataclass
class StoreSnapshot:
    """Immutable in-memory view of the store.

    Attributes:
        records: CVE records by id, one per id after cross-shard resolution.
        generation: Digest of the applied shard states; changes whenever any
            shard is replaced.
    """

    records: dict[str, CveRecord] = field(default_factory=dict)
    generation: str = ""
    _by_key: dict[tuple[str, str], list[CveRecord]] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        if not self._by_key:
            by_key: dict[tuple[str, str], list[CveRecord]] = defaultdict(list)
            for record in self.records.values():
                for key in {r.key for r in record.ranges}:
                    by_key[key].append(record)
            self._by_key = dict(by_key)

    def __len__(self) -> int:
        return len(self.records)

    def vendor_product_pairs(self) -> list[tuple[str, str]]:
        """Distinct lower-case ``(vendor, product)`` pairs, sorted."""
        return sorted(self._by_key)

    def records_for(self, vendor: str, product: str) -> list[CveRecord]:
        """Records with at least one range for this vendor/product."""
        return list(self._by_key.get((vendor.lower(), product.lower()), ()))


def resolve_records(shards: list[tuple[str, list[CveRecord]]]) -> dict[str, CveRecord]:
    """Merge per-shard records into one record per CVE id.

    The newest ``last_modified`` wins; on a tie the modified shard wins.
    """
    chosen: dict[str, tuple[CveRecord, bool]] = {}
    for shard_id, records in shards:
        from_modified = shard_id == MODIFIED_SHARD_ID
        for record in records:
            current = chosen.get(record.id)
            if current is None:
                chosen[record.id] = (record, from_modified)
                continue
            existing, existing_modified = current
            new_ts = record.last_modified or ""
            old_ts = existing.last_modified or ""
            if new_ts > old_ts or (new_ts == old_ts and from_modified and not existing_modified):
                chosen[record.id] = (record, from_modified)
    return {cve_id: rec for cve_id, (rec, _) in chosen.items()}


class CveStore:
    """On-disk store of synchronized feed shards.

    Attributes:
        data_dir: Store root directory.
        lock_config: Lock waits and poll interval.
        states: Per-shard ``SyncState`` persistence.
    """

    def __init__(self, data_dir: Path, lock_config: LockConfig | None = None):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.shard_dir = self.data_dir / "shards"
        self.lock_config = lock_config or LockConfig()
        self.states = SyncStateStore(self.data_dir / "state")
        self.properties_path = self.data_dir / "store.properties"

    def lock(self) -> DirectorySpinLock:
        """A new lock handle on the data directory (one per thread)."""
        return DirectorySpinLock(self.data_dir, poll_interval=self.lock_config.poll_interval)

    def shard_path(self, shard_id: str) -> Path:
        return self.shard_dir / f"{shard_id}.json"

    def has_data(self) -> bool:
        return self.shard_dir.exists() and any(self.shard_dir.glob("*.json"))

    def shard_ids(self) -> list[str]:
        """Stored shard ids, base shards in order with the modified shard last."""
        if not self.shard_dir.exists():
            return []
        ids = sorted(p.stem for p in self.shard_dir.glob("*.json"))
        return sorted(ids, key=lambda s: s == MODIFIED_SHARD_ID)

    def load_properties(self) -> StoreProperties:
        return StoreProperties(self.properties_path)

    # ── Writes (exclusive lock) ─────────────────────────────────────────────

    def _write_shard_file(self, shard_id: str, records: list[CveRecord]) -> None:
        self.shard_dir.mkdir(parents=True, exist_ok=True)
        path = self.shard_path(shard_id)
        tmp = path.with_suffix(".tmp")
        payload = {
            "shard": shard_id,
            "schema_version": SCHEMA_VERSION,
            "records": [r.to_dict() for r in records],
        }
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(payload, f)
            f.flush()
            os.fsync(f.fileno())
        tmp.replace(path)
        # the rename itself must be durable before the sync state is written
        dir_fd = os.open(self.shard_dir, os.O_RDONLY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)

    def merge_shard(self, shard_id: str, records: list[CveRecord], state: SyncState) -> None:
        """Replace a shard's records, then record its new sync state.

        Both writes happen under the exclusive lock.  The state file is only
        written once the record file has been replaced.

        Raises:
            LockTimeoutError: if the exclusive lock was not obtained in time.
        """
        with self.lock().exclusive(self.lock_config.max_wait_seconds):
            self._write_shard_file(shard_id, records)
            self.states.save(state)
        logger.info(f"Merged shard {shard_id}: {len(records)} records")

    def update_properties(self, values: dict[str, str]) -> None:
        """Set store-wide properties under the exclusive lock."""
        with self.lock().exclusive(self.lock_config.max_wait_seconds):
            props = self.load_properties()
            for key, value in values.items():
                props.set(key, value)
            props.save()

    # ── Reads (shared lock) ─────────────────────────────────────────────────

    def _read_shard_file(self, shard_id: str) -> list[CveRecord]:
        path = self.shard_path(shard_id)
        try:
            with path.open("r", encoding="utf-8") as f:
                payload = json.load(f)
        except json.JSONDecodeError as e:
            raise IntegrityError.unrecognized_structure(shard_id, f"stored file is not JSON: {e}") from e
        if not isinstance(payload, dict) or not isinstance(payload.get("records"), list):
            raise IntegrityError.unrecognized_structure(shard_id, "stored file has no records list")
        return [CveRecord.from_dict(r) for r in payload["records"]]

    def load_snapshot(self) -> StoreSnapshot:
        """Load every shard under the shared lock.

        Raises:
            LockTimeoutError: if the shared lock was not obtained in time.
            IntegrityError: if a stored shard file is corrupt.
        """
        with self.lock().shared(self.lock_config.max_wait_seconds):
            shards = [(shard_id, self._read_shard_file(shard_id)) for shard_id in self.shard_ids()]
            digest = hashlib.sha256()
            for shard_id, _ in shards:
                state = self.states.load(shard_id)
                digest.update(f"{shard_id}:{state.sha256 if state else ''};".encode("utf-8"))

        records = resolve_records(shards)
        logger.info(f"Loaded store snapshot: {len(records)} CVE records from {len(shards)} shard(s)")
        return StoreSnapshot(records=records, generation=digest.hexdigest()[:16])
