"""Unit tests for depradar.report — findings JSON output."""

import json
from pathlib import Path

from depradar import __version__
from depradar.evidence import Confidence, Dependency, EvidenceType
from depradar.identifiers import Identifier
from depradar.records import Finding
from depradar.report import build_findings_document, dependency_summary, write_findings_json

# ── Helpers ──────────────────────────────────────────────────────────────────


def _dependency(name: str = "struts2-core-2.1.2.jar", findings: int = 1) -> Dependency:
    dep = Dependency(file_path=f"/libs/{name}", sha256="cd" * 32)
    ident = Identifier("apache", "struts", "2.1.2", Confidence.HIGH)
    dep.add_identifier(ident)
    dep.add_identifier(Identifier("apache", "struts2-core"))
    evidence = dep.add_evidence(EvidenceType.VERSION, "pom", "version", "2.1.2", Confidence.HIGHEST)
    dep.findings = [
        Finding(ident, f"CVE-2023-{n:04d}", "CRITICAL", 9.8, "2.1.2", [evidence]) for n in range(1, findings + 1)
    ]
    return dep


# ── dependency_summary ───────────────────────────────────────────────────────


class TestDependencySummary:
    def test_fields(self):
        summary = dependency_summary(_dependency())
        assert summary["file_name"] == "struts2-core-2.1.2.jar"
        assert summary["file_path"] == "/libs/struts2-core-2.1.2.jar"
        assert summary["sha256"] == "cd" * 32
        assert summary["identifiers"] == ["apache:struts2-core", "apache:struts:2.1.2"]

    def test_finding_shape(self):
        (finding,) = dependency_summary(_dependency())["findings"]
        assert finding == {
            "identifier": "apache:struts:2.1.2",
            "record_id": "CVE-2023-0001",
            "severity": "CRITICAL",
            "score": 9.8,
            "matched_version": "2.1.2",
            "evidence": [{"source": "pom", "name": "version", "value": "2.1.2", "confidence": "HIGHEST"}],
        }


# ── build_findings_document / write_findings_json ────────────────────────────


class TestFindingsDocument:
    def test_counts(self):
        doc = build_findings_document([_dependency(findings=2), _dependency("clean.jar", findings=0)])
        assert doc["dependency_count"] == 2
        assert doc["finding_count"] == 2
        assert doc["engine_version"] == __version__
        assert doc["generated_at"].endswith("+00:00")

    def test_empty(self):
        doc = build_findings_document([])
        assert doc["dependencies"] == []
        assert doc["finding_count"] == 0

    def test_write_creates_parents(self, tmp_path: Path):
        out = tmp_path / "reports" / "nested" / "findings.json"
        write_findings_json(out, [_dependency()])
        data = json.loads(out.read_text(encoding="utf-8"))
        assert data["finding_count"] == 1
        assert [p.name for p in out.parent.iterdir()] == ["findings.json"]

    def test_write_replaces_existing(self, tmp_path: Path):
        out = tmp_path / "findings.json"
        out.write_text("stale")
        write_findings_json(out, [])
        assert json.loads(out.read_text(encoding="utf-8"))["dependency_count"] == 0
