"""Configuration models using Pydantic.

Every tunable of the synchronization pipeline, the directory lock, the
CPE index, the analysis pool and the findings cache lives here.  Thresholds
that are policy rather than mechanism (check intervals, forced-resync
version) are configuration, never hard-coded.
"""

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

NVD_FEED_BASE_URL = "https://nvd.nist.gov/feeds/json/cve/2.0"


class SyncConfig(BaseModel):
    """NVD feed synchronization settings.

    Attributes:
        enabled: When ``False`` the pipeline never contacts the feed.
        feed_base_url: Directory URL holding ``nvdcve-2.0-*.json.gz`` and
            their ``.meta`` descriptors.
        start_year: First yearly base shard.
        end_year: Last yearly base shard; ``None`` means the current year.
        max_download_workers: Shards processed concurrently.
        connect_timeout: HTTP connect timeout in seconds.
        read_timeout: HTTP read timeout in seconds.
        retry_attempts: Attempts per shard for transient failures.
        retry_wait_max: Upper bound of the exponential backoff, seconds.
        check_valid_for_hours: Skip the whole check if the last complete
            check is younger than this.  ``0`` always checks.
        modified_valid_for_days: When the last complete check is younger
            than this, only the ``modified`` shard descriptor is consulted.
        version_check_interval_hours: Minimum interval between engine
            version checks.
        force_resync_below: Engine version threshold; a store last written
            by an engine older than this is fully resynchronized.
        release_check_url: Optional URL of a text file holding the latest
            published release, used to warn about upgrades.
    """

    enabled: bool = True
    feed_base_url: str = NVD_FEED_BASE_URL
    start_year: int = Field(default=2002, ge=2002)
    end_year: int | None = None
    max_download_workers: int = Field(default=3, ge=1, le=16)
    connect_timeout: float = Field(default=10.0, gt=0)
    read_timeout: float = Field(default=300.0, gt=0)
    retry_attempts: int = Field(default=3, ge=1, le=10)
    retry_wait_max: float = Field(default=30.0, ge=0)
    check_valid_for_hours: int = Field(default=2, ge=0)
    modified_valid_for_days: int = Field(default=7, ge=0, le=8)
    version_check_interval_hours: int = Field(default=24, ge=0)
    force_resync_below: str | None = None
    release_check_url: str | None = None

    @model_validator(mode="after")
    def _check_years(self) -> "SyncConfig":
        if self.end_year is not None and self.end_year < self.start_year:
            raise ValueError("end_year must not be before start_year")
        return self


class LockConfig(BaseModel):
    """Directory spin lock settings.

    Attributes:
        max_wait_seconds: Give up acquiring after this long.
        poll_interval: Seconds between non-blocking attempts.
        stale_after_seconds: Age after which an unheld lock file may be
            deleted by ``remove_stale_lock``.
    """

    max_wait_seconds: float = Field(default=50.0, ge=0)
    poll_interval: float = Field(default=0.5, gt=0)
    stale_after_seconds: float = Field(default=3600.0, gt=0)


class IndexConfig(BaseModel):
    """CPE index settings."""

    max_query_results: int = Field(default=25, ge=1, le=1000)


class AnalysisConfig(BaseModel):
    """Per-dependency analysis pool settings."""

    max_workers: int = Field(default=4, ge=1, le=64)


class CacheConfig(BaseModel):
    """Findings cache settings.

    Attributes:
        enabled: Whether to use the disk cache at all.
        directory: Cache directory; defaults to ``<data_dir>/cache``.
    """

    enabled: bool = True
    directory: Path | None = None


class Settings(BaseModel):
    """Validated DepRadar configuration.

    Example YAML::

        data_dir: ~/.depradar
        sync:
          start_year: 2015
          max_download_workers: 4
        lock:
          max_wait_seconds: 120
        cache:
          enabled: false
    """

    data_dir: Path = Field(default_factory=lambda: Path.home() / ".depradar")
    sync: SyncConfig = Field(default_factory=SyncConfig)
    lock: LockConfig = Field(default_factory=LockConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    @field_validator("data_dir", mode="before")
    @classmethod
    def _expand_data_dir(cls, v: Any) -> Any:
        """Expand ``~`` in the data directory."""
        if isinstance(v, str):
            return Path(v).expanduser()
        if isinstance(v, Path):
            return v.expanduser()
        return v

    @property
    def cache_dir(self) -> Path:
        return self.cache.directory or (self.data_dir / "cache")


def load_settings(path: Path) -> Settings:
    """Load settings from a YAML or JSON file.

    Args:
        path: Path to the settings file.

    Returns:
        Validated ``Settings`` instance.

    Raises:
        FileNotFoundError: if the file doesn't exist.
        pydantic.ValidationError: if content fails validation.
    """
    suffix = path.suffix.lower()
    content = path.read_text(encoding="utf-8")

    if suffix in (".yaml", ".yml"):
        raw = yaml.safe_load(content) or {}
    elif suffix == ".json":
        raw = json.loads(content)
    else:
        try:
            raw = yaml.safe_load(content) or {}
        except yaml.YAMLError:
            raw = json.loads(content)

    settings = Settings.model_validate(raw)
    logger.debug(f"Loaded settings from {path} (data_dir={settings.data_dir})")
    return settings


def find_settings() -> Path | None:
    """Find the settings file in the working directory, preferring YAML.

    Returns:
        Path of the first existing settings file, or ``None``.
    """
    for name in ("depradar.yaml", "depradar.yml", "depradar.json"):
        if Path(name).exists():
            return Path(name)
    return None
