"""Shared fixtures for the DepRadar test suite."""

from pathlib import Path

import pytest

from depradar.config import CacheConfig, LockConfig, Settings, SyncConfig
from depradar.evidence import Confidence, Dependency, EvidenceType
from helpers import FEED_BASE, FakeFeedClient, cve_item


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings for two base years with no waits and no rate limiting."""
    return Settings(
        data_dir=tmp_path / "data",
        sync=SyncConfig(
            feed_base_url=FEED_BASE,
            start_year=2023,
            end_year=2024,
            retry_attempts=3,
            retry_wait_max=0,
            check_valid_for_hours=0,
        ),
        lock=LockConfig(max_wait_seconds=2, poll_interval=0.01),
        cache=CacheConfig(enabled=False),
    )


@pytest.fixture
def feed_client() -> FakeFeedClient:
    """A fake feed with one struts CVE in 2023, one spring CVE in 2024, empty modified shard."""
    client = FakeFeedClient()
    client.publish(
        "nvdcve-2.0-2023",
        [
            cve_item(
                "CVE-2023-0001",
                versionStartIncluding="2.0.0",
                versionEndIncluding="2.3.1",
            )
        ],
    )
    client.publish(
        "nvdcve-2.0-2024",
        [
            cve_item(
                "CVE-2024-0002",
                vendor="vmware",
                product="spring_framework",
                score=7.5,
                severity="HIGH",
                versionEndExcluding="5.3.18",
            )
        ],
    )
    client.publish("nvdcve-2.0-modified", [])
    return client


@pytest.fixture
def struts_dependency() -> Dependency:
    """struts2-core 2.1.2 with manifest-style evidence."""
    dep = Dependency(file_path="/libs/struts2-core-2.1.2.jar", sha256="ab" * 32)
    dep.add_evidence(EvidenceType.VENDOR, "manifest", "Implementation-Vendor", "Apache Software Foundation", Confidence.HIGH)
    dep.add_evidence(EvidenceType.VENDOR, "pom", "groupid", "org.apache.struts", Confidence.HIGHEST)
    dep.add_evidence(EvidenceType.PRODUCT, "pom", "artifactid", "struts2-core", Confidence.HIGHEST)
    dep.add_evidence(EvidenceType.PRODUCT, "manifest", "Implementation-Title", "Struts 2 Core", Confidence.HIGH)
    dep.add_evidence(EvidenceType.VERSION, "pom", "version", "2.1.2", Confidence.HIGHEST)
    return dep
