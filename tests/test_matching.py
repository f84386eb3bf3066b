"""Unit tests for depradar.matching."""

from depradar.evidence import Confidence, Dependency, EvidenceType
from depradar.identifiers import Identifier
from depradar.matching import VulnerabilityMatcher, record_matches
from depradar.records import CveRecord, VersionRange
from depradar.store import StoreSnapshot

STRUTS = Identifier("apache", "struts", "2.1.2", Confidence.HIGH)


def _record(cve_id: str, *ranges: VersionRange, score: float | None = 9.8) -> CveRecord:
    return CveRecord(id=cve_id, severity="CRITICAL" if score and score >= 9 else "HIGH", score=score, ranges=ranges)


def _struts_range(**kw) -> VersionRange:
    kw.setdefault("start_including", "2.0.0")
    kw.setdefault("end_including", "2.3.1")
    return VersionRange("apache", "struts", **kw)


# ── record_matches ───────────────────────────────────────────────────────────


class TestRecordMatches:
    def test_inside_range(self):
        assert record_matches(_record("CVE-2023-0001", _struts_range()), STRUTS, "2.1.2")

    def test_outside_range(self):
        assert not record_matches(_record("CVE-2023-0001", _struts_range()), STRUTS, "2.5.0")

    def test_vendor_product_case_insensitive(self):
        record = _record("CVE-2023-0001", VersionRange("Apache", "Struts", end_excluding="3.0"))
        assert record_matches(record, STRUTS, "2.1.2")

    def test_other_product_ignored(self):
        record = _record("CVE-2023-0001", VersionRange("apache", "tomcat"))
        assert not record_matches(record, STRUTS, "2.1.2")

    def test_missing_version_needs_unbounded_range(self):
        assert record_matches(_record("CVE-2023-0001", VersionRange("apache", "struts")), STRUTS, None)
        assert not record_matches(_record("CVE-2023-0002", _struts_range()), STRUTS, None)

    def test_not_applicable_version(self):
        record = _record("CVE-2023-0001", VersionRange("apache", "struts", version="-"))
        assert not record_matches(record, STRUTS, "2.1.2")

    def test_exact_version(self):
        record = _record("CVE-2023-0001", VersionRange("apache", "struts", version="2.1.2"))
        assert record_matches(record, STRUTS, "2.1.2")
        assert not record_matches(record, STRUTS, "2.1.3")

    def test_any_of_several_ranges(self):
        record = _record(
            "CVE-2023-0001",
            VersionRange("apache", "struts", end_excluding="1.0"),
            _struts_range(),
        )
        assert record_matches(record, STRUTS, "2.1.2")


# ── VulnerabilityMatcher ─────────────────────────────────────────────────────


class TestVulnerabilityMatcher:
    """Tests for VulnerabilityMatcher.match()."""

    def _matcher(self, *records: CveRecord) -> VulnerabilityMatcher:
        return VulnerabilityMatcher(StoreSnapshot(records={r.id: r for r in records}))

    def test_single_finding(self):
        matcher = self._matcher(_record("CVE-2023-0001", _struts_range()))
        dep = Dependency(file_path="struts2-core-2.1.2.jar")
        dep.add_identifier(STRUTS)
        findings = matcher.match(dep)
        assert [f.record_id for f in findings] == ["CVE-2023-0001"]
        assert findings[0].identifier == STRUTS
        assert findings[0].matched_version == "2.1.2"
        assert findings[0].severity == "CRITICAL"
        assert dep.findings == findings

    def test_no_identifiers(self):
        matcher = self._matcher(_record("CVE-2023-0001", _struts_range()))
        dep = Dependency(file_path="x.jar")
        assert matcher.match(dep) == []
        assert dep.findings == []

    def test_duplicate_record_keeps_highest_confidence(self):
        matcher = self._matcher(_record("CVE-2023-0001", _struts_range()))
        dep = Dependency(file_path="x.jar")
        low = Identifier("apache", "struts", "2.1.2", Confidence.LOW)
        dep.add_identifier(low)
        dep.add_identifier(STRUTS)
        findings = matcher.match(dep)
        assert len(findings) == 1
        assert findings[0].identifier.confidence == Confidence.HIGH

    def test_sorted_by_score_then_newest(self):
        matcher = self._matcher(
            _record("CVE-2021-0100", _struts_range(), score=7.5),
            _record("CVE-2022-0001", _struts_range(), score=9.8),
            _record("CVE-2023-0005", _struts_range(), score=7.5),
            _record("CVE-2023-0010", _struts_range(), score=None),
        )
        dep = Dependency(file_path="x.jar")
        dep.add_identifier(STRUTS)
        ids = [f.record_id for f in matcher.match(dep)]
        assert ids == ["CVE-2022-0001", "CVE-2023-0005", "CVE-2021-0100", "CVE-2023-0010"]

    def test_declared_version_fallback(self):
        matcher = self._matcher(_record("CVE-2023-0001", _struts_range()))
        dep = Dependency(file_path="x.jar", version="2.2.0")
        dep.add_identifier(Identifier("apache", "struts"))
        (finding,) = matcher.match(dep)
        assert finding.matched_version == "2.2.0"

    def test_unversioned_identifier_against_bounded_range(self):
        matcher = self._matcher(_record("CVE-2023-0001", _struts_range()))
        dep = Dependency(file_path="x.jar")
        dep.add_identifier(Identifier("apache", "struts"))
        assert matcher.match(dep) == []

    def test_findings_carry_used_evidence(self, struts_dependency):
        matcher = self._matcher(_record("CVE-2023-0001", _struts_range()))
        list(struts_dependency.vendor_evidence.iterator(Confidence.HIGHEST))
        struts_dependency.add_evidence(EvidenceType.VERSION, "file", "name", "2.1.2", Confidence.LOW)
        struts_dependency.add_identifier(STRUTS)
        (finding,) = matcher.match(struts_dependency)
        assert [e.value for e in finding.evidence] == ["org.apache.struts"]

    def test_match_identifier(self):
        matcher = self._matcher(
            _record("CVE-2023-0001", _struts_range()),
            _record("CVE-2023-0002", VersionRange("apache", "struts", end_excluding="2.0.0")),
        )
        assert [r.id for r in matcher.match_identifier(STRUTS, "2.1.2")] == ["CVE-2023-0001"]
