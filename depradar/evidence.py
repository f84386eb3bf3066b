"""Evidence and confidence model.

Evidence extractors record weak clues about a dependency's vendor, product
and version.  Each clue carries a confidence.  Collections are append-only;
repeated equal evidence is kept because corroboration raises the weight of
a term during query construction.
"""

import hashlib
import re
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Iterator

if TYPE_CHECKING:
    from .identifiers import Identifier
    from .records import Finding


class Confidence(IntEnum):
    """Confidence of a piece of evidence, ordered ``LOW < HIGHEST``."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    HIGHEST = 4

    @classmethod
    def descending(cls) -> list["Confidence"]:
        """All levels from ``HIGHEST`` down to ``LOW``."""
        return sorted(cls, reverse=True)


class EvidenceType(str, Enum):
    """Axis a piece of evidence describes."""

    VENDOR = "vendor"
    PRODUCT = "product"
    VERSION = "version"


@dataclass(frozen=True)
class Evidence:
    """A single clue about a dependency's identity.

    Attributes:
        source: Where the clue came from (e.g. ``manifest``, ``file``).
        name: Name of the field inside the source (e.g. ``Bundle-Vendor``).
        value: The clue itself.
        confidence: How much the clue is trusted.
    """

    source: str
    name: str
    value: str
    confidence: Confidence


class _ConfidenceView:
    """Restartable lazy view over a collection filtered by confidence."""

    def __init__(self, collection: "EvidenceCollection", minimum: Confidence, mark_used: bool):
        self._collection = collection
        self._minimum = minimum
        self._mark_used = mark_used

    def __iter__(self) -> Iterator[Evidence]:
        items = self._collection._items
        # only the entries present when iteration started
        for position in range(len(items)):
            evidence = items[position]
            if evidence.confidence >= self._minimum:
                if self._mark_used:
                    self._collection._used.add(position)
                yield evidence


class EvidenceCollection:
    """Append-only multiset of evidence for one axis of a dependency.

    Used evidence is tracked by position so two equal pieces of evidence
    remain distinct.  The used positions always index into the collection.
    """

    def __init__(self) -> None:
        self._items: list[Evidence] = []
        self._used: set[int] = set()
        self._weightings: set[str] = set()

    def add_evidence(self, source: str, name: str, value: str, confidence: Confidence) -> Evidence:
        """Append a new piece of evidence.

        Args:
            source: Source of the evidence.
            name: Field name within the source.
            value: Evidence text.
            confidence: Confidence level.

        Returns:
            The stored ``Evidence``.
        """
        evidence = Evidence(source=source, name=name, value=value, confidence=Confidence(confidence))
        self._items.append(evidence)
        return evidence

    def add(self, evidence: Evidence) -> None:
        self._items.append(evidence)

    def iterator(self, min_confidence: Confidence = Confidence.LOW) -> Iterable[Evidence]:
        """Lazy view of evidence at or above ``min_confidence``.

        Items are produced in insertion order and marked used as they are
        yielded.  The returned object can be iterated more than once.
        """
        return _ConfidenceView(self, Confidence(min_confidence), mark_used=True)

    def peek(self, min_confidence: Confidence = Confidence.LOW) -> Iterable[Evidence]:
        """Like :meth:`iterator` but without marking anything used."""
        return _ConfidenceView(self, Confidence(min_confidence), mark_used=False)

    def mark_used(self, evidence: Iterable[Evidence]) -> None:
        """Mark every stored copy of the given evidence as used."""
        wanted = set(evidence)
        for position, item in enumerate(self._items):
            if item in wanted:
                self._used.add(position)

    def get_used(self) -> list[Evidence]:
        """Evidence that was consulted, in insertion order."""
        return [self._items[p] for p in sorted(self._used)]

    def contains(self, confidence: Confidence) -> bool:
        """Whether any evidence has exactly the given confidence."""
        return any(e.confidence == confidence for e in self._items)

    def add_weighting(self, text: str) -> None:
        """Register a term that deserves an extra boost in searches."""
        if text:
            self._weightings.add(text)

    @property
    def weightings(self) -> set[str]:
        return set(self._weightings)

    def values(self) -> list[str]:
        return [e.value for e in self._items]

    def contains_used_string(self, text: str) -> bool:
        """Whether any used evidence contains ``text``.

        Comparison is case-insensitive and ignores whitespace, underscores
        and hyphens in the evidence.
        """
        if not text:
            return False
        needle = text.lower()
        for evidence in self.get_used():
            haystack = re.sub(r"[\s_-]", "", evidence.value.lower())
            if needle in haystack:
                return True
        return False

    def __iter__(self) -> Iterator[Evidence]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __str__(self) -> str:
        return " ".join(e.value for e in self._items)


def _file_digests(path: Path) -> tuple[str, str]:
    sha1 = hashlib.sha1()
    sha256 = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            sha1.update(chunk)
            sha256.update(chunk)
    return sha1.hexdigest(), sha256.hexdigest()


@dataclass(eq=False)
class Dependency:
    """One scanned artifact and everything learned about it.

    Attributes:
        file_path: Path of the scanned file.
        file_name: Base name of the file.
        name: Package name declared by a manifest, if any.
        version: Version declared by a manifest, if any.
        ecosystem: Package ecosystem (``maven``, ``npm``...), if known.
        sha1: Hex SHA-1 of the file content.
        sha256: Hex SHA-256 of the file content, used for caching.
        identifiers: Identifiers resolved so far.
        findings: Vulnerabilities matched so far.
    """

    file_path: str
    file_name: str = ""
    name: str | None = None
    version: str | None = None
    ecosystem: str | None = None
    sha1: str | None = None
    sha256: str | None = None
    vendor_evidence: EvidenceCollection = field(default_factory=EvidenceCollection)
    product_evidence: EvidenceCollection = field(default_factory=EvidenceCollection)
    version_evidence: EvidenceCollection = field(default_factory=EvidenceCollection)
    identifiers: set["Identifier"] = field(default_factory=set)
    findings: list["Finding"] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.file_name:
            self.file_name = Path(self.file_path).name

    @classmethod
    def from_path(cls, path: Path) -> "Dependency":
        """Create a dependency for a file, hashing its content."""
        sha1, sha256 = _file_digests(path)
        return cls(file_path=str(path), sha1=sha1, sha256=sha256)

    def evidence(self, evidence_type: EvidenceType) -> EvidenceCollection:
        if evidence_type == EvidenceType.VENDOR:
            return self.vendor_evidence
        if evidence_type == EvidenceType.PRODUCT:
            return self.product_evidence
        return self.version_evidence

    def add_evidence(
        self,
        evidence_type: EvidenceType,
        source: str,
        name: str,
        value: str,
        confidence: Confidence,
    ) -> Evidence:
        return self.evidence(evidence_type).add_evidence(source, name, value, confidence)

    def add_identifier(self, identifier: "Identifier") -> None:
        self.identifiers.add(identifier)

    def used_evidence(self) -> list[Evidence]:
        """Used evidence across vendor, product and version, in that order."""
        return (
            self.vendor_evidence.get_used()
            + self.product_evidence.get_used()
            + self.version_evidence.get_used()
        )

    def display_name(self) -> str:
        if self.name and self.version:
            return f"{self.name}:{self.version}"
        return self.name or self.file_name
