"""Engine version gate.

Two independent triggers decide whether a synchronization ignores every
stored shard state and rebuilds the store:

* the running engine writes a newer store schema than the one recorded, or
* the running engine is at or past ``force_resync_below`` while the engine
  that last wrote the store was older.

Independently, and at most once per ``version_check_interval_hours``, the
latest published release can be looked up so operators are told about
upgrades.
"""

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Callable

import requests

from . import __version__
from .config import SyncConfig
from .downloaders import fetch_latest_release, requests_session
from .errors import DepRadarError
from .sync_state import SCHEMA_VERSION, StoreProperties
from .versions import DependencyVersion

logger = logging.getLogger(__name__)


@dataclass
class VersionCheckResult:
    """Outcome of the version gate.

    Attributes:
        force_resync: Every shard must be downloaded again.
        reason: Why a resync is forced.
        latest_release: Latest published version, when it was looked up.
        properties: Store properties to record once the run succeeds.
    """

    force_resync: bool = False
    reason: str | None = None
    latest_release: str | None = None
    properties: dict[str, str] = field(default_factory=dict)


def _older(version: str | None, than: str) -> bool:
    if not version:
        return True
    return DependencyVersion(version) < DependencyVersion(than)


class EngineVersionCheck:
    """Decides on version-gated resyncs and performs release checks.

    Args:
        config: Sync settings (``force_resync_below``,
            ``version_check_interval_hours``, ``release_check_url``).
        running_version: Version of this engine.
        schema_version: Store schema this engine writes.
        session_factory: Creates the ``requests`` session for release checks.
    """

    def __init__(
        self,
        config: SyncConfig,
        running_version: str = __version__,
        schema_version: int = SCHEMA_VERSION,
        session_factory: Callable[[], requests.Session] = requests_session,
    ):
        self.config = config
        self.running_version = running_version
        self.schema_version = schema_version
        self.session_factory = session_factory

    def resync_reason(self, props: StoreProperties, has_data: bool) -> str | None:
        """Why the stored data must be rebuilt, or None."""
        if not has_data:
            return None
        recorded_schema = props.schema_version
        if recorded_schema is None or recorded_schema < self.schema_version:
            return f"store schema {recorded_schema} is older than {self.schema_version}"
        threshold = self.config.force_resync_below
        if threshold and not _older(self.running_version, threshold):
            recorded_engine = props.get("engine_version")
            if _older(recorded_engine, threshold):
                return f"store written by engine {recorded_engine or 'unknown'}, resync required from {threshold}"
        return None

    def release_check_due(self, props: StoreProperties, now: dt.datetime) -> bool:
        if not self.config.release_check_url:
            return False
        last = props.get_datetime("version_checked_on")
        if last is None:
            return True
        return now - last >= dt.timedelta(hours=self.config.version_check_interval_hours)

    def check_latest_release(self) -> str | None:
        """Look up the latest release; failures are logged, never raised."""
        url = self.config.release_check_url
        if not url:
            return None
        try:
            latest = fetch_latest_release(self.session_factory(), url)
        except (DepRadarError, ValueError) as e:
            logger.warning(f"Release check against {url} failed: {e}")
            return None
        if latest and DependencyVersion(latest) > DependencyVersion(self.running_version):
            logger.warning(f"DepRadar {latest} is available (running {self.running_version})")
        return latest

    def evaluate(self, props: StoreProperties, has_data: bool, now: dt.datetime | None = None) -> VersionCheckResult:
        """Run the gate against the recorded store properties."""
        now = now or dt.datetime.now(dt.timezone.utc)
        result = VersionCheckResult(
            properties={
                "engine_version": self.running_version,
                "schema_version": str(self.schema_version),
            }
        )
        reason = self.resync_reason(props, has_data)
        if reason:
            logger.info(f"Forcing full resync: {reason}")
            result.force_resync = True
            result.reason = reason
        if self.release_check_due(props, now):
            result.latest_release = self.check_latest_release()
            result.properties["version_checked_on"] = now.isoformat()
        return result
