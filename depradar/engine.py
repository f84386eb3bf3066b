"""Scan orchestration.

The engine keeps the store current, opens a snapshot and index, and runs
each dependency through evidence extraction, identification and matching
on a thread pool.  A failing dependency is recorded on the result and never
stops its siblings; a failing update never stops matching against the
last-known-good store.

Usage::

    engine = Engine(load_settings(Path("depradar.yaml")))
    result = engine.analyze([Path("lib/struts2-core-2.1.2.jar")])
    for dependency, finding in result.findings:
        print(dependency.file_name, finding.record_id)
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Protocol

from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from .cache import FindingsCache
from .config import Settings
from .downloaders import is_retryable
from .cpe_analyzer import CpeAnalyzer
from .errors import AnalysisError, DepRadarError
from .evidence import Confidence, Dependency, EvidenceType
from .index import CpeMemoryIndex
from .lock import remove_stale_lock
from .matching import VulnerabilityMatcher
from .records import Finding
from .store import CveStore, StoreSnapshot
from .sync import NvdSynchronizer, SyncReport
from .versions import parse_pre_version, parse_version

logger = logging.getLogger(__name__)


class EvidenceExtractor(Protocol):
    """Collects evidence for dependencies of one kind (jar, npm, ...)."""

    name: str

    def accept(self, path: Path) -> bool: ...

    def analyze(self, dependency: Dependency, context: "ScanContext") -> None:
        """Add evidence to ``dependency``; raise ``AnalysisError`` on failure."""
        ...


class FileNameExtractor:
    """Evidence from the file name (``struts2-core-2.1.2.jar``).

    The part before the version becomes vendor and product evidence, the
    version itself version evidence.
    """

    name = "file-name"

    def accept(self, path: Path) -> bool:
        return True

    def analyze(self, dependency: Dependency, context: "ScanContext") -> None:
        stem = Path(dependency.file_name).stem
        if not stem:
            return
        package = parse_pre_version(stem)
        version = parse_version(stem)
        dependency.add_evidence(EvidenceType.VENDOR, "file", "name", package, Confidence.HIGH)
        dependency.add_evidence(EvidenceType.PRODUCT, "file", "name", package, Confidence.HIGH)
        if version is not None:
            dependency.add_evidence(EvidenceType.VERSION, "file", "version", str(version), Confidence.MEDIUM)


@dataclass
class ScanContext:
    """Read-only state shared by the analysis workers of one scan."""

    settings: Settings
    snapshot: StoreSnapshot
    index: CpeMemoryIndex
    cpe_analyzer: CpeAnalyzer
    matcher: VulnerabilityMatcher

    def close(self) -> None:
        self.index.close()

    def __enter__(self) -> "ScanContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


@dataclass
class ScanResult:
    """Outcome of one scan.

    Attributes:
        dependencies: Every dependency, analyzed or not.
        errors: File path → error for dependencies whose analysis failed.
        sync_report: Result of the preceding update, if one ran.
        cache_hits: Dependencies answered from the findings cache.
    """

    dependencies: list[Dependency] = field(default_factory=list)
    errors: dict[str, DepRadarError] = field(default_factory=dict)
    sync_report: SyncReport | None = None
    cache_hits: int = 0

    @property
    def findings(self) -> list[tuple[Dependency, Finding]]:
        return [(d, f) for d in self.dependencies for f in d.findings]


class Engine:
    """Runs scans against the local store.

    Args:
        settings: Validated settings.
        extractors: Evidence extractors; defaults to the file name extractor.
        synchronizer: Pipeline used by :meth:`update`.
    """

    def __init__(
        self,
        settings: Settings,
        extractors: Iterable[EvidenceExtractor] | None = None,
        synchronizer: NvdSynchronizer | None = None,
    ):
        self.settings = settings
        self.store = CveStore(settings.data_dir, settings.lock)
        self.extractors: list[EvidenceExtractor] = (
            list(extractors) if extractors is not None else [FileNameExtractor()]
        )
        self.synchronizer = synchronizer or NvdSynchronizer(self.store, settings)
        self.cache = FindingsCache(settings.cache, settings.cache_dir)

    def update(self) -> SyncReport | None:
        """Synchronize the store; failures are logged and the old data kept."""
        remove_stale_lock(self.store.data_dir, self.settings.lock.stale_after_seconds)
        try:
            report = self.synchronizer.synchronize()
        except DepRadarError as e:
            logger.warning(f"NVD update failed, continuing with existing data: {e.message}")
            return None
        except Exception:
            logger.exception("Unexpected error during NVD update, continuing with existing data")
            return None
        if report.failed:
            logger.warning(f"NVD update incomplete, failed shards: {', '.join(sorted(report.failed))}")
        return report

    def open(self) -> ScanContext:
        """Load a snapshot and build the CPE index for a scan.

        Raises:
            LockTimeoutError: if the shared lock was still unavailable after
                the configured retry attempts.
        """
        snapshot = self._load_snapshot()
        index = CpeMemoryIndex()
        index.open(snapshot.vendor_product_pairs())
        return ScanContext(
            settings=self.settings,
            snapshot=snapshot,
            index=index,
            cpe_analyzer=CpeAnalyzer(index, snapshot, self.settings.index.max_query_results),
            matcher=VulnerabilityMatcher(snapshot),
        )

    def _load_snapshot(self) -> StoreSnapshot:
        cfg = self.settings.sync
        retrying = Retrying(
            stop=stop_after_attempt(cfg.retry_attempts),
            wait=wait_exponential(multiplier=1, max=cfg.retry_wait_max),
            retry=retry_if_exception(is_retryable),
            before_sleep=lambda state: logger.warning(
                f"Store snapshot not available (attempt {state.attempt_number}), retrying"
            ),
            reraise=True,
        )
        return retrying(self.store.load_snapshot)

    def _analyze_one(self, dependency: Dependency, context: ScanContext) -> bool:
        """Analyze one dependency; returns True when served from cache."""
        generation = context.snapshot.generation
        if self.cache.get(dependency, generation):
            return True
        path = Path(dependency.file_path)
        for extractor in self.extractors:
            if extractor.accept(path):
                extractor.analyze(dependency, context)
        context.cpe_analyzer.analyze(dependency)
        context.matcher.match(dependency)
        self.cache.put(dependency, generation)
        return False

    @staticmethod
    def _as_dependency(item: Path | Dependency) -> Dependency:
        if isinstance(item, Dependency):
            return item
        try:
            return Dependency.from_path(Path(item))
        except OSError as e:
            failed = Dependency(file_path=str(item))
            raise _PreparationError(failed, AnalysisError(f"Cannot read {item}: {e}", "UNREADABLE_FILE")) from e

    def analyze(self, items: Iterable[Path | Dependency], update: bool = True) -> ScanResult:
        """Scan dependencies (paths or prepared ``Dependency`` objects).

        Args:
            items: Files or dependencies to analyze.
            update: Synchronize the store first.

        Returns:
            ``ScanResult`` with every dependency and per-dependency errors.
        """
        result = ScanResult()
        if update:
            result.sync_report = self.update()

        for item in items:
            try:
                result.dependencies.append(self._as_dependency(item))
            except _PreparationError as e:
                result.dependencies.append(e.dependency)
                result.errors[e.dependency.file_path] = e.error

        pending = [d for d in result.dependencies if d.file_path not in result.errors]
        with self.open() as context:
            with ThreadPoolExecutor(max_workers=self.settings.analysis.max_workers) as pool:
                futures = {pool.submit(self._analyze_one, d, context): d for d in pending}
                for future in as_completed(futures):
                    dependency = futures[future]
                    try:
                        if future.result():
                            result.cache_hits += 1
                    except DepRadarError as e:
                        logger.warning(f"Analysis of {dependency.display_name()} failed: {e.message}")
                        result.errors[dependency.file_path] = e
                    except Exception as e:
                        logger.exception(f"Unexpected error analyzing {dependency.display_name()}")
                        error = AnalysisError(f"{dependency.display_name()}: {e!r}", "ANALYSIS_FAILED")
                        error.__cause__ = e
                        result.errors[dependency.file_path] = error

        logger.info(
            f"Scan finished: {len(result.dependencies)} dependencies, "
            f"{len(result.findings)} findings, {len(result.errors)} errors"
        )
        return result


class _PreparationError(Exception):
    def __init__(self, dependency: Dependency, error: AnalysisError):
        super().__init__(error.message)
        self.dependency = dependency
        self.error = error
