"""In-memory fuzzy index of CPE vendor/product pairs.

One document per distinct vendor+product pair, with both fields analyzed
by the field analyzer.  Scoring follows the classic TF-IDF model:

* ``idf = 1 + ln(N / (df + 1))``, squared per matching term,
* ``sqrt(tf)`` term frequency,
* ``1 / sqrt(field length)`` length normalization,
* a coordination factor ``matched / optional clauses`` for boolean queries,
* query boosts multiplied in.

Rebuilding is cheap relative to a sync, so the index is built from a store
snapshot each time it is opened.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable

from .analysis import analyze_field
from .errors import IndexClosedError
from .query import BooleanQuery, Occur, PhraseQuery, Query, TermQuery, parse_query

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexEntry:
    """A stored document: one vendor/product pair."""

    vendor: str
    product: str


@dataclass(frozen=True)
class SearchHit:
    doc_id: int
    score: float


class _FieldIndex:
    """Postings and positions for one field."""

    def __init__(self) -> None:
        self.postings: dict[str, dict[int, int]] = defaultdict(dict)
        self.positions: dict[int, dict[str, list[int]]] = {}
        self.lengths: dict[int, int] = {}

    def add(self, doc_id: int, text: str) -> None:
        terms = analyze_field(text)
        per_term: dict[str, list[int]] = defaultdict(list)
        for position, term in terms:
            per_term[term].append(position)
            self.postings[term][doc_id] = self.postings[term].get(doc_id, 0) + 1
        self.positions[doc_id] = dict(per_term)
        self.lengths[doc_id] = max(len(terms), 1)

    def norm(self, doc_id: int) -> float:
        return 1.0 / math.sqrt(self.lengths.get(doc_id, 1))


class CpeMemoryIndex:
    """Fuzzy full-text index over CPE vendor/product pairs.

    Example::

        with CpeMemoryIndex() as index:
            index.open(snapshot.vendor_product_pairs())
            hits = index.search(index.parse_query("product:(struts) AND vendor:(apache)"), 10)
            entry = index.get_document(hits[0].doc_id)
    """

    def __init__(self) -> None:
        self._documents: list[IndexEntry] | None = None
        self._fields: dict[str, _FieldIndex] = {}

    def open(self, pairs: Iterable[tuple[str, str]]) -> None:
        """Build the index from ``(vendor, product)`` pairs, replacing any previous content."""
        documents: list[IndexEntry] = []
        seen: set[tuple[str, str]] = set()
        fields = {"vendor": _FieldIndex(), "product": _FieldIndex()}
        for vendor, product in pairs:
            key = (vendor.lower(), product.lower())
            if key in seen:
                continue
            seen.add(key)
            doc_id = len(documents)
            documents.append(IndexEntry(vendor=key[0], product=key[1]))
            fields["vendor"].add(doc_id, key[0])
            fields["product"].add(doc_id, key[1])
        self._fields = fields
        self._documents = documents
        logger.info(f"CPE index built with {len(documents)} vendor/product documents")

    def is_open(self) -> bool:
        return self._documents is not None

    def close(self) -> None:
        """Drop the index content.  Safe to call repeatedly or before ``open``."""
        self._documents = None
        self._fields = {}

    def __enter__(self) -> "CpeMemoryIndex":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _require_open(self) -> list[IndexEntry]:
        if self._documents is None:
            raise IndexClosedError()
        return self._documents

    def num_docs(self) -> int:
        return len(self._require_open())

    def get_document(self, doc_id: int) -> IndexEntry:
        """Return the stored vendor/product for a hit.

        Raises:
            IndexClosedError: if the index is not open.
            IndexError: for an unknown document id.
        """
        documents = self._require_open()
        if doc_id < 0 or doc_id >= len(documents):
            raise IndexError(f"No document {doc_id} in CPE index")
        return documents[doc_id]

    @staticmethod
    def parse_query(text: str) -> Query:
        """Parse query text; see :func:`depradar.query.parse_query`."""
        return parse_query(text)

    def search(self, query: Query, max_results: int = 25) -> list[SearchHit]:
        """Rank documents against a query.

        Returns:
            Up to ``max_results`` hits, best first; ties by document id.

        Raises:
            IndexClosedError: if the index is not open.
        """
        self._require_open()
        scores = self._score(query)
        ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
        hits = [SearchHit(doc_id, score) for doc_id, score in ranked[:max_results] if score > 0]
        logger.debug(f"CPE search returned {len(hits)} of {len(scores)} matching documents")
        return hits

    # ── Scoring ─────────────────────────────────────────────────────────────

    def _idf(self, field: _FieldIndex, term: str) -> float:
        df = len(field.postings.get(term, ()))
        return 1.0 + math.log(len(self._documents) / (df + 1))

    def _score(self, query: Query) -> dict[int, float]:
        if isinstance(query, TermQuery):
            return self._score_term(query)
        if isinstance(query, PhraseQuery):
            return self._score_phrase(query)
        return self._score_boolean(query)

    def _score_term(self, query: TermQuery) -> dict[int, float]:
        field = self._fields[query.field]
        postings = field.postings.get(query.term)
        if not postings:
            return {}
        idf = self._idf(field, query.term)
        return {
            doc_id: math.sqrt(tf) * idf * idf * field.norm(doc_id) * query.boost
            for doc_id, tf in postings.items()
        }

    def _score_phrase(self, query: PhraseQuery) -> dict[int, float]:
        field = self._fields[query.field]
        candidates: set[int] | None = None
        for term in query.terms:
            docs = set(field.postings.get(term, ()))
            candidates = docs if candidates is None else candidates & docs
            if not candidates:
                return {}
        idf = sum(self._idf(field, t) for t in query.terms)
        scores: dict[int, float] = {}
        for doc_id in candidates or ():
            positions = field.positions[doc_id]
            freq = sum(
                1
                for start in positions[query.terms[0]]
                if all(start + i in positions[t] for i, t in enumerate(query.terms[1:], 1))
            )
            if freq:
                scores[doc_id] = math.sqrt(freq) * idf * idf * field.norm(doc_id) * query.boost
        return scores

    def _score_boolean(self, query: BooleanQuery) -> dict[int, float]:
        required: list[dict[int, float]] = []
        optional: list[dict[int, float]] = []
        prohibited: set[int] = set()
        for clause in query.clauses:
            scores = self._score(clause.query)
            if clause.occur == Occur.MUST:
                required.append(scores)
            elif clause.occur == Occur.SHOULD:
                optional.append(scores)
            else:
                prohibited.update(scores)

        if required:
            candidates = set(required[0])
            for scores in required[1:]:
                candidates &= set(scores)
        else:
            candidates = set()
            for scores in optional:
                candidates.update(scores)
        candidates -= prohibited

        total_clauses = len(required) + len(optional)
        result: dict[int, float] = {}
        for doc_id in candidates:
            matched = 0
            score = 0.0
            for scores in required + optional:
                if doc_id in scores:
                    matched += 1
                    score += scores[doc_id]
            coord = matched / total_clauses if total_clauses else 0.0
            result[doc_id] = score * coord * query.boost
        return result
