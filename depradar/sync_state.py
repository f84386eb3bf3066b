"""Persisted synchronization state.

Each shard's last applied descriptor is kept as a small ``key=value`` text
file so a later run can tell whether the remote shard changed.  Store-wide
values (last complete check, engine version) live in ``store.properties``.
Both are written atomically (write-then-rename).
"""

import datetime as dt
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path

from .errors import SyncStateError

logger = logging.getLogger(__name__)

# Bump when the on-disk record format changes; forces a full resync.
SCHEMA_VERSION = 2

_REQUIRED_KEYS = ("shard_id", "last_modified", "sha256", "size", "schema_version")


def _write_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        f.write(text)
        f.flush()
        os.fsync(f.fileno())
    tmp.replace(path)


def _parse_properties(text: str) -> dict[str, str]:
    values: dict[str, str] = {}
    # only "\n" ends a line; other separators may appear inside values
    for line in text.split("\n"):
        line = line.rstrip("\r")
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = value
    return values


def _check_value(key: str, value: str) -> str:
    if "\n" in value or "\r" in value:
        raise SyncStateError.invalid_value(key, value, "line breaks are not allowed")
    return value


@dataclass(frozen=True)
class SyncState:
    """Last descriptor applied for one shard.

    Attributes:
        shard_id: Shard name (``nvdcve-2.0-2024`` or ``nvdcve-2.0-modified``).
        last_modified: Descriptor ``lastModifiedDate``.
        sha256: Descriptor hash of the uncompressed JSON.
        size: Descriptor size of the uncompressed JSON.
        schema_version: Record format the shard was written with.
    """

    shard_id: str
    last_modified: str
    sha256: str
    size: int
    schema_version: int = SCHEMA_VERSION

    def serialize(self) -> str:
        """Render as ``key=value`` lines in a fixed key order."""
        lines = [f"{key}={_check_value(key, str(value))}" for key, value in asdict(self).items()]
        return "\n".join(lines) + "\n"

    @classmethod
    def parse(cls, text: str) -> "SyncState":
        """Parse the output of :meth:`serialize`.

        Raises:
            SyncStateError: naming every missing key, or a non-numeric size
                or schema version.
        """
        values = _parse_properties(text)
        missing = [k for k in _REQUIRED_KEYS if k not in values]
        if missing:
            raise SyncStateError.missing_keys(values.get("shard_id", "<unknown>"), missing)
        numbers: dict[str, int] = {}
        for key in ("size", "schema_version"):
            try:
                numbers[key] = int(values[key])
            except ValueError as e:
                raise SyncStateError.invalid_value(key, values[key], "not an integer") from e
        return cls(
            shard_id=values["shard_id"],
            last_modified=values["last_modified"],
            sha256=values["sha256"],
            size=numbers["size"],
            schema_version=numbers["schema_version"],
        )

    def differs_from(self, last_modified: str, sha256: str, size: int) -> bool:
        """Whether a descriptor describes different content than this state."""
        return self.last_modified != last_modified or self.sha256 != sha256.lower() or self.size != size


class SyncStateStore:
    """Reads and writes per-shard ``SyncState`` files under ``directory``."""

    def __init__(self, directory: Path):
        self.directory = directory

    def path_for(self, shard_id: str) -> Path:
        return self.directory / f"{shard_id}.properties"

    def load(self, shard_id: str) -> SyncState | None:
        """Load a shard's state; ``None`` when it was never synchronized."""
        path = self.path_for(shard_id)
        if not path.exists():
            return None
        return SyncState.parse(path.read_text(encoding="utf-8"))

    def save(self, state: SyncState) -> None:
        _write_atomic(self.path_for(state.shard_id), state.serialize())

    def delete(self, shard_id: str) -> None:
        self.path_for(shard_id).unlink(missing_ok=True)

    def shard_ids(self) -> list[str]:
        if not self.directory.exists():
            return []
        return sorted(p.stem for p in self.directory.glob("*.properties"))


class StoreProperties:
    """Store-wide ``key=value`` properties.

    Known keys: ``last_checked`` (ISO time of the last check in which every
    shard succeeded), ``engine_version``, ``version_checked_on`` and
    ``schema_version``.

    Attributes:
        path: Path to ``store.properties``.
        data: In-memory values.
    """

    def __init__(self, path: Path):
        self.path = path
        self.data = self._load()

    def _load(self) -> dict[str, str]:
        if self.path.exists():
            return _parse_properties(self.path.read_text(encoding="utf-8"))
        return {}

    def save(self) -> None:
        """Save properties atomically (write-then-rename)."""
        lines = [f"{k}={_check_value(k, v)}" for k, v in sorted(self.data.items())]
        _write_atomic(self.path, "\n".join(lines) + "\n")

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.data.get(key, default)

    def set(self, key: str, value: str) -> None:
        self.data[key] = str(value)

    def get_datetime(self, key: str) -> dt.datetime | None:
        """Read an ISO timestamp; unreadable values count as absent."""
        raw = self.data.get(key)
        if not raw:
            return None
        try:
            parsed = dt.datetime.fromisoformat(raw)
        except ValueError:
            logger.warning(f"Ignoring unreadable {key}={raw!r} in {self.path}")
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=dt.timezone.utc)
        return parsed

    def set_datetime(self, key: str, value: dt.datetime) -> None:
        self.data[key] = value.isoformat()

    @property
    def schema_version(self) -> int | None:
        raw = self.data.get("schema_version")
        try:
            return int(raw) if raw is not None else None
        except ValueError:
            return None
