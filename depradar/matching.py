"""Vulnerability matching.

Matches every identifier of a dependency against the version ranges of the
CVE records in a store snapshot.  Vendor and product are compared
case-normalized; versions with the numeric-aware ``DependencyVersion``
ordering.
"""

import logging

from .evidence import Dependency
from .identifiers import Identifier
from .parsers import cve_year_and_num, norm
from .records import CveRecord, Finding
from .store import StoreSnapshot
from .versions import DependencyVersion

logger = logging.getLogger(__name__)


def _finding_sort_key(finding: Finding) -> tuple[float, int, int, str]:
    year_num = cve_year_and_num(finding.record_id) or (0, 0)
    return (-(finding.score or 0.0), -year_num[0], -year_num[1], finding.record_id)


def record_matches(record: CveRecord, identifier: Identifier, version: str | None) -> bool:
    """Whether any range of ``record`` covers the identifier at ``version``."""
    vendor, product = norm(identifier.vendor), norm(identifier.product)
    parsed = DependencyVersion(version) if version else None
    for r in record.ranges:
        if norm(r.vendor) != vendor or norm(r.product) != product:
            continue
        if r.admits(parsed):
            return True
    return False


class VulnerabilityMatcher:
    """Produces findings for dependencies from a store snapshot."""

    def __init__(self, snapshot: StoreSnapshot):
        self.snapshot = snapshot

    def match_identifier(self, identifier: Identifier, version: str | None) -> list[CveRecord]:
        return [
            record
            for record in self.snapshot.records_for(identifier.vendor, identifier.product)
            if record_matches(record, identifier, version)
        ]

    def match(self, dependency: Dependency) -> list[Finding]:
        """Findings for every identifier, one per CVE record.

        When several identifiers match the same record, the finding from the
        highest-confidence identifier is kept.  Findings are ordered by
        score, then newest CVE first.
        """
        best: dict[str, Finding] = {}
        evidence = dependency.used_evidence()
        for identifier in sorted(dependency.identifiers, key=lambda i: (-i.confidence, str(i))):
            version = identifier.version or dependency.version
            for record in self.match_identifier(identifier, version):
                existing = best.get(record.id)
                if existing is not None and existing.identifier.confidence >= identifier.confidence:
                    continue
                best[record.id] = Finding(
                    identifier=identifier,
                    record_id=record.id,
                    severity=record.severity,
                    score=record.score,
                    matched_version=version,
                    evidence=list(evidence),
                )
        findings = sorted(best.values(), key=_finding_sort_key)
        if findings:
            logger.info(f"{dependency.display_name()}: {len(findings)} finding(s)")
        dependency.findings = findings
        return findings
