"""CVE records, vulnerable version ranges and findings.

Records are immutable once parsed; a shard update replaces its records
wholesale rather than editing them.
"""

from dataclasses import dataclass, field
from typing import Any

from .evidence import Confidence, Evidence
from .identifiers import Identifier
from .versions import DependencyVersion

ANY = "*"
NA = "-"


@dataclass(frozen=True)
class VersionRange:
    """One vulnerable ``cpeMatch`` entry of a CVE record.

    ``version`` is the concrete version in the CPE (``*`` when the entry is
    expressed with bounds, ``-`` when not applicable).  Bound fields are
    ``None`` when absent.
    """

    vendor: str
    product: str
    version: str = ANY
    start_including: str | None = None
    start_excluding: str | None = None
    end_including: str | None = None
    end_excluding: str | None = None
    update: str = ANY
    target_sw: str = ANY
    part: str = "a"
    cpe: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return self.vendor.lower(), self.product.lower()

    def has_bounds(self) -> bool:
        return any((self.start_including, self.start_excluding, self.end_including, self.end_excluding))

    def admits(self, version: "DependencyVersion | str | None") -> bool:
        """Whether ``version`` falls inside this range.

        A missing dependency version is only admitted by an unbounded
        ``*`` range, which covers every version of the product.
        """
        if self.version == NA:
            return False
        if version is None or version == "":
            return self.version == ANY and not self.has_bounds()
        if not isinstance(version, DependencyVersion):
            version = DependencyVersion(version)

        if self.version != ANY:
            exact = self.version
            if self.update not in (ANY, NA, ""):
                # e.g. version 2.0.0 update beta1 only admits 2.0.0-beta1
                exact = f"{exact}.{self.update}"
            return version == DependencyVersion(exact)

        if self.start_including and version < DependencyVersion(self.start_including):
            return False
        if self.start_excluding and version <= DependencyVersion(self.start_excluding):
            return False
        if self.end_including and version > DependencyVersion(self.end_including):
            return False
        if self.end_excluding and version >= DependencyVersion(self.end_excluding):
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "vendor": self.vendor,
            "product": self.product,
            "version": self.version,
            "start_including": self.start_including,
            "start_excluding": self.start_excluding,
            "end_including": self.end_including,
            "end_excluding": self.end_excluding,
            "update": self.update,
            "target_sw": self.target_sw,
            "part": self.part,
            "cpe": self.cpe,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VersionRange":
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__ if k in data})


@dataclass(frozen=True)
class CveRecord:
    """A parsed NVD CVE record.

    Attributes:
        id: CVE identifier (``CVE-2024-12345``).
        description: English description.
        severity: Base severity of the primary CVSS metric.
        score: Base score of the primary CVSS metric.
        cvss_vector: Vector string of the primary CVSS metric.
        cwe_ids: Weakness identifiers (``CWE-79``).
        published: ISO timestamp.
        last_modified: ISO timestamp; newer wins across shards.
        ranges: Vulnerable version ranges.
    """

    id: str
    description: str = ""
    severity: str | None = None
    score: float | None = None
    cvss_vector: str | None = None
    cwe_ids: tuple[str, ...] = ()
    published: str | None = None
    last_modified: str | None = None
    ranges: tuple[VersionRange, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "severity": self.severity,
            "score": self.score,
            "cvss_vector": self.cvss_vector,
            "cwe_ids": list(self.cwe_ids),
            "published": self.published,
            "last_modified": self.last_modified,
            "ranges": [r.to_dict() for r in self.ranges],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CveRecord":
        return cls(
            id=data["id"],
            description=data.get("description") or "",
            severity=data.get("severity"),
            score=data.get("score"),
            cvss_vector=data.get("cvss_vector"),
            cwe_ids=tuple(data.get("cwe_ids") or ()),
            published=data.get("published"),
            last_modified=data.get("last_modified"),
            ranges=tuple(VersionRange.from_dict(r) for r in data.get("ranges") or ()),
        )


@dataclass
class Finding:
    """A CVE record matched to one dependency identifier."""

    identifier: Identifier
    record_id: str
    severity: str | None
    score: float | None
    matched_version: str | None
    evidence: list[Evidence] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serializable form: identifier, record id, severity, score, version and evidence."""
        return {
            "identifier": str(self.identifier),
            "record_id": self.record_id,
            "severity": self.severity,
            "score": self.score,
            "matched_version": self.matched_version,
            "evidence": [
                {
                    "source": e.source,
                    "name": e.name,
                    "value": e.value,
                    "confidence": e.confidence.name,
                }
                for e in self.evidence
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], identifier: Identifier) -> "Finding":
        """Rebuild a finding written by :meth:`to_dict` for a known identifier."""
        return cls(
            identifier=identifier,
            record_id=data["record_id"],
            severity=data.get("severity"),
            score=data.get("score"),
            matched_version=data.get("matched_version"),
            evidence=[
                Evidence(e["source"], e["name"], e["value"], Confidence[e["confidence"]])
                for e in data.get("evidence") or []
            ],
        )
