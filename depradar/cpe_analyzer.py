"""Turns dependency evidence into CPE identifiers.

For each confidence level from HIGHEST down to LOW the vendor and product
evidence at or above that level is turned into a weighted index query.
Each hit is verified against the evidence, and the first level that yields
an identifier ends the search.
"""

import logging
import re
from typing import Iterable

from .errors import AnalysisError, IndexClosedError, QuerySyntaxError
from .evidence import Confidence, Dependency, Evidence, EvidenceCollection
from .identifiers import Identifier, IdentifierSource
from .index import CpeMemoryIndex, IndexEntry
from .query import escape_query_text, is_keyword
from .store import StoreSnapshot
from .versions import UPDATE_QUALIFIER_RX, DependencyVersion, parse_version

logger = logging.getLogger(__name__)

CLEANSE_CHARACTER_RX = re.compile(r"[^A-Za-z0-9 ._:/-]")
CLEANSE_NONALPHA_RX = re.compile(r"[^A-Za-z0-9]+")
_WORD_SPLIT_RX = re.compile(r"[\s_-]+")

MAX_TERM_LENGTH = 1000
WEIGHTING_BOOST = 1
CONFIDENCE_BOOST = {
    Confidence.HIGHEST: 4,
    Confidence.HIGH: 3,
    Confidence.MEDIUM: 2,
    Confidence.LOW: 1,
}

STOP_WORDS = frozenset({"software", "framework", "inc", "com", "org", "net", "www", "consulting", "ltd", "foundation", "project"})


def cleanse_text(text: str) -> str:
    """Replace characters that never appear in CPE names with spaces."""
    return CLEANSE_CHARACTER_RX.sub(" ", text)


def trim_value(value: str, limit: int = MAX_TERM_LENGTH) -> str:
    """Cut an over-long value at the last separator before ``limit``."""
    if len(value) <= limit:
        return value
    for sep in (" ", ".", "-", "_", "/"):
        pos = value.rfind(sep, 0, limit + 1)
        if pos > 0:
            return value[:pos]
    return value[:limit]


def collect_terms(evidence: Iterable[Evidence]) -> dict[str, tuple[int, Confidence]]:
    """Count cleansed evidence values, remembering each value's best confidence."""
    terms: dict[str, tuple[int, Confidence]] = {}
    for e in evidence:
        value = cleanse_text(e.value).strip()
        if not value:
            continue
        value = trim_value(value)
        count, best = terms.get(value, (0, e.confidence))
        terms[value] = (count + 1, max(best, e.confidence))
    return terms


def _find_boost_term(word: str, weightings: set[str]) -> str | None:
    left = CLEANSE_NONALPHA_RX.sub("", word).lower()
    for entry in sorted(weightings):
        if left == CLEANSE_NONALPHA_RX.sub("", entry).lower():
            return entry
    return None


def _escaped(word: str) -> str:
    if is_keyword(word):
        return f'"{escape_query_text(word)}"'
    return escape_query_text(word)


def append_weighted_search(field: str, terms: dict[str, tuple[int, Confidence]], weightings: set[str]) -> str | None:
    """Render one ``field:(...)`` clause; None when there is nothing to search."""
    parts: list[str] = []
    for value, (count, confidence) in terms.items():
        boost = CONFIDENCE_BOOST[confidence]
        for word in value.split(" "):
            if not word:
                continue
            boost_term = _find_boost_term(word, weightings)
            if boost_term is not None:
                weight = (count + WEIGHTING_BOOST) * boost
                parts.append(f"{_escaped(word)}^{weight}")
                if boost_term != word:
                    for extra in boost_term.split():
                        parts.append(f"{_escaped(extra)}^{weight}")
            elif count * boost > 1:
                parts.append(f"{_escaped(word)}^{count * boost}")
            else:
                parts.append(_escaped(word))
    if not parts:
        return None
    return f"{field}:({' '.join(parts)})"


def build_search(
    vendor: dict[str, tuple[int, Confidence]],
    product: dict[str, tuple[int, Confidence]],
    vendor_weightings: set[str] | None = None,
    product_weightings: set[str] | None = None,
) -> str | None:
    """Build ``product:(...) AND vendor:(...)`` from collected terms.

    Returns:
        The query text, or None if either side has no terms.
    """
    product_clause = append_weighted_search("product", product, product_weightings or set())
    if product_clause is None:
        return None
    vendor_clause = append_weighted_search("vendor", vendor, vendor_weightings or set())
    if vendor_clause is None:
        return None
    return f"{product_clause} AND {vendor_clause}"


def collection_contains_string(evidence: EvidenceCollection, text: str) -> bool:
    """Whether every word of ``text`` occurs in some evidence value.

    Words of two characters or fewer are joined to the following word
    (``m core`` → ``mcore``); stop words are ignored.
    """
    if not text:
        return False
    lowered = text.lower()
    values = [e.value.lower() for e in evidence]
    if lowered in values:
        return True

    words: list[str] = []
    pending: str | None = None
    for word in _WORD_SPLIT_RX.split(text):
        if not word:
            continue
        if pending is not None:
            words.append(pending + word)
            pending = None
        elif len(word) <= 2:
            pending = word
        elif word.lower() not in STOP_WORDS:
            words.append(word)
    if pending is not None:
        words.append(words[-1] + pending if words else pending)
    if not words:
        return False

    squashed = [_WORD_SPLIT_RX.sub("", v) for v in values]
    for word in words:
        word = word.lower()
        found = False
        for value in squashed:
            if word in value:
                if word == "http" and "http:" in value:
                    continue
                found = True
                break
        if not found:
            return False
    return True


def verify_entry(entry: IndexEntry, dependency: Dependency) -> bool:
    """Whether the hit's vendor and product are both backed by evidence."""
    return collection_contains_string(dependency.vendor_evidence, entry.vendor) and collection_contains_string(
        dependency.product_evidence, entry.product
    )


class CpeAnalyzer:
    """Identifies dependencies through the CPE index.

    Args:
        index: An open ``CpeMemoryIndex``.
        snapshot: Store snapshot used to confirm guessed versions.
        max_results: Hits considered per query.
    """

    def __init__(self, index: CpeMemoryIndex, snapshot: StoreSnapshot | None = None, max_results: int = 25):
        self.index = index
        self.snapshot = snapshot
        self.max_results = max_results

    def _known_versions(self, entry: IndexEntry) -> set[DependencyVersion]:
        if self.snapshot is None:
            return set()
        versions = set()
        for record in self.snapshot.records_for(entry.vendor, entry.product):
            for r in record.ranges:
                if r.key == (entry.vendor, entry.product) and r.version not in ("*", "-"):
                    versions.add(DependencyVersion(r.version))
        return versions

    def guess_version(self, dependency: Dependency, entry: IndexEntry) -> tuple[str | None, IdentifierSource, Evidence | None]:
        """Pick the version for an identified vendor/product.

        A version the store knows for this product wins (``exact-match``);
        otherwise the most specific version at the highest confidence is a
        ``best-guess``.  Without version evidence the identifier carries no
        version.
        """
        known = self._known_versions(entry)
        best: tuple[DependencyVersion, Evidence] | None = None
        for confidence in Confidence.descending():
            for e in dependency.version_evidence.peek(confidence):
                if e.confidence != confidence:
                    continue
                version = parse_version(e.value, first_match_only=True)
                if version is None:
                    continue
                if version in known:
                    return str(version), IdentifierSource.EXACT_MATCH, e
                if best is None or len(version) > len(best[0]):
                    best = (version, e)
            if best is not None:
                break
        if best is None:
            if dependency.version:
                return dependency.version, IdentifierSource.FUZZY_INDEX, None
            return None, IdentifierSource.FUZZY_INDEX, None
        version, e = best
        parts = version.parts
        # trailing qualifiers such as "release" belong to the CPE update slot
        if len(parts) > 1 and UPDATE_QUALIFIER_RX.match(parts[-1]) and not parts[-1].isdigit():
            return ".".join(parts[:-1]), IdentifierSource.BEST_GUESS, e
        return str(version), IdentifierSource.BEST_GUESS, e

    def analyze(self, dependency: Dependency) -> bool:
        """Add fuzzy-index identifiers to ``dependency``.

        Returns:
            True if at least one identifier was added.  Finding nothing is
            not an error; existing identifiers are kept.

        Raises:
            AnalysisError: if the index is unusable.
        """
        previously_found: set[int] = set()
        for confidence in Confidence.descending():
            vendor_ev = list(dependency.vendor_evidence.peek(confidence))
            product_ev = list(dependency.product_evidence.peek(confidence))
            vendors = collect_terms(vendor_ev)
            products = collect_terms(product_ev)
            if not vendors or not products:
                continue
            text = build_search(
                vendors,
                products,
                dependency.vendor_evidence.weightings,
                dependency.product_evidence.weightings,
            )
            if text is None:
                continue
            logger.debug(f"CPE search for {dependency.display_name()} at {confidence.name}: {text}")
            try:
                hits = self.index.search(self.index.parse_query(text), self.max_results)
            except QuerySyntaxError as e:
                logger.warning(f"Unable to parse generated CPE query for {dependency.display_name()}: {e.message}")
                continue
            except IndexClosedError as e:
                raise AnalysisError(f"CPE index search failed for {dependency.display_name()}: {e}", "INDEX_FAILURE") from e

            added = False
            for hit in hits:
                if hit.doc_id in previously_found:
                    continue
                previously_found.add(hit.doc_id)
                entry = self.index.get_document(hit.doc_id)
                if not verify_entry(entry, dependency):
                    continue
                version, source, version_evidence = self.guess_version(dependency, entry)
                logger.debug(f"Identified {entry.vendor}:{entry.product}:{version} for {dependency.display_name()}")
                dependency.add_identifier(
                    Identifier(entry.vendor, entry.product, version, confidence, source)
                )
                if version_evidence is not None:
                    dependency.version_evidence.mark_used([version_evidence])
                added = True
            if added:
                dependency.vendor_evidence.mark_used(vendor_ev)
                dependency.product_evidence.mark_used(product_ev)
                return True
        return False
