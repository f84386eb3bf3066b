"""Disk cache of per-dependency results.

Entries are keyed by the dependency's content hash and the store snapshot
generation, so any change to either invalidates the entry.  A cache that
cannot be written is switched off for the rest of the run instead of
failing the scan.

Key scheme::

    <cache_dir>/<sha256[:2]>/<sha256>-<generation>.json
"""

import json
import logging
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any

from .config import CacheConfig
from .evidence import Dependency
from .identifiers import Identifier
from .records import Finding

logger = logging.getLogger(__name__)

CACHE_FORMAT = 1


class CacheState(str, Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"


class FindingsCache:
    """Identifiers and findings per dependency hash and store generation.

    Attributes:
        directory: Cache root.
        state: ``ENABLED`` or ``DISABLED``.
        disabled_reason: Why the cache was switched off, if it was.
    """

    def __init__(self, config: CacheConfig, directory: Path):
        self.directory = directory
        self.state = CacheState.ENABLED
        self.disabled_reason: str | None = None
        if not config.enabled:
            self._disable("disabled by configuration", warn=False)
            return
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self._disable(f"cannot create {self.directory}: {e}")

    @property
    def enabled(self) -> bool:
        return self.state == CacheState.ENABLED

    def _disable(self, reason: str, warn: bool = True) -> None:
        self.state = CacheState.DISABLED
        self.disabled_reason = reason
        if warn:
            logger.warning(f"Findings cache disabled: {reason}")

    def _path(self, sha256: str, generation: str) -> Path:
        return self.directory / sha256[:2] / f"{sha256}-{generation}.json"

    def get(self, dependency: Dependency, generation: str) -> bool:
        """Restore cached identifiers and findings onto ``dependency``.

        Returns:
            True on a hit.  Always False when disabled or unhashed.
        """
        if not self.enabled or not dependency.sha256:
            return False
        path = self._path(dependency.sha256, generation)
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return False
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Cache get failed for {path.name}: {e}")
            return False
        try:
            if data.get("format") != CACHE_FORMAT:
                return False
            identifiers, findings = self._decode(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Cache entry {path.name} is malformed: {e!r}")
            return False
        dependency.identifiers.update(identifiers)
        dependency.findings = findings
        logger.debug(f"Cache hit for {dependency.display_name()}")
        return True

    @staticmethod
    def _decode(data: dict[str, Any]) -> tuple[list[Identifier], list[Finding]]:
        identifiers = [Identifier.from_dict(i) for i in data.get("identifiers") or []]
        by_name: dict[str, Identifier] = {}
        for identifier in identifiers:
            current = by_name.get(str(identifier))
            if current is None or identifier.confidence > current.confidence:
                by_name[str(identifier)] = identifier
        findings = [
            Finding.from_dict(f, by_name[f["identifier"]])
            for f in data.get("findings") or []
            if f.get("identifier") in by_name
        ]
        return identifiers, findings

    def put(self, dependency: Dependency, generation: str) -> None:
        """Store the dependency's identifiers and findings."""
        if not self.enabled or not dependency.sha256:
            return
        path = self._path(dependency.sha256, generation)
        payload: dict[str, Any] = {
            "format": CACHE_FORMAT,
            "file_name": dependency.file_name,
            "identifiers": [i.to_dict() for i in sorted(dependency.identifiers, key=str)],
            "findings": [f.to_dict() for f in dependency.findings],
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # one temp file per writer; equal content may be cached by two workers at once
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=path.parent, prefix=f"{path.stem}.", suffix=".tmp", delete=False
            ) as f:
                json.dump(payload, f)
            Path(f.name).replace(path)
        except OSError as e:
            self._disable(f"cannot write {path}: {e}")
