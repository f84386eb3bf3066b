"""Unit tests for depradar.index — the in-memory CPE index."""

import pytest

from depradar.errors import IndexClosedError
from depradar.index import CpeMemoryIndex, IndexEntry
from depradar.query import escape_query_text

PAIRS = [
    ("apache", "struts"),
    ("apache", "struts_tiles"),
    ("apache", "tomcat"),
    ("vmware", "spring_framework"),
    ("acme", "framework_spring"),
]


@pytest.fixture
def index():
    idx = CpeMemoryIndex()
    idx.open(PAIRS)
    yield idx
    idx.close()


def _entries(index: CpeMemoryIndex, text: str, max_results: int = 25) -> list[IndexEntry]:
    return [index.get_document(h.doc_id) for h in index.search(index.parse_query(text), max_results)]


# ── Lifecycle ────────────────────────────────────────────────────────────────


class TestLifecycle:
    def test_open_dedupes_case_insensitively(self):
        idx = CpeMemoryIndex()
        idx.open([("Apache", "Struts"), ("apache", "struts"), ("apache", "tomcat")])
        assert idx.num_docs() == 2
        assert idx.get_document(0) == IndexEntry("apache", "struts")

    def test_closed_before_open(self):
        idx = CpeMemoryIndex()
        assert not idx.is_open()
        with pytest.raises(IndexClosedError):
            idx.num_docs()

    def test_close_is_idempotent(self, index):
        index.close()
        index.close()
        assert not index.is_open()
        with pytest.raises(IndexClosedError):
            index.search(index.parse_query("struts"))

    def test_reopen(self, index):
        index.close()
        index.open([("acme", "tool")])
        assert index.num_docs() == 1

    def test_context_manager(self):
        with CpeMemoryIndex() as idx:
            idx.open(PAIRS)
            assert idx.is_open()
        assert not idx.is_open()

    def test_unknown_document(self, index):
        with pytest.raises(IndexError):
            index.get_document(99)

    def test_empty_index(self):
        idx = CpeMemoryIndex()
        idx.open([])
        assert idx.search(idx.parse_query("struts")) == []


# ── search ───────────────────────────────────────────────────────────────────


class TestSearch:
    """Tests for CpeMemoryIndex.search()."""

    def test_shorter_field_ranks_first(self, index):
        entries = _entries(index, "product:(struts)")
        assert [e.product for e in entries] == ["struts", "struts_tiles"]

    def test_and_requires_both_fields(self, index):
        entries = _entries(index, "product:(struts) AND vendor:(vmware)")
        assert entries == []

    def test_vendor_and_product(self, index):
        entries = _entries(index, "product:(Struts^3 2^3 Core^3) AND vendor:(apache^3)")
        assert entries[0] == IndexEntry("apache", "struts")

    def test_phrase_requires_order(self, index):
        entries = _entries(index, 'product:"spring framework"')
        assert entries == [IndexEntry("vmware", "spring_framework")]

    def test_terms_match_either_order(self, index):
        entries = _entries(index, "product:(spring framework)")
        assert {e.product for e in entries} == {"spring_framework", "framework_spring"}

    def test_prohibited(self, index):
        entries = _entries(index, "product:(struts) -product:(tiles)")
        assert [e.product for e in entries] == ["struts"]

    def test_boost_changes_ranking(self, index):
        entries = _entries(index, "product:(struts tomcat^10)")
        assert entries[0].product == "tomcat"

    def test_max_results(self, index):
        assert len(index.search(index.parse_query("vendor:(apache)"), max_results=2)) == 2

    def test_scores_descending(self, index):
        hits = index.search(index.parse_query("product:(struts tiles spring)"))
        scores = [h.score for h in hits]
        assert scores == sorted(scores, reverse=True)
        assert all(s > 0 for s in scores)

    def test_no_match(self, index):
        assert index.search(index.parse_query("product:(nothing)")) == []

    def test_escaped_reserved_characters(self):
        with CpeMemoryIndex() as idx:
            idx.open(PAIRS + [("apache", "struts2-core"), ("eclipse", "jetty/http")])
            product = escape_query_text("struts2-core")
            assert product == "struts2\\-core"
            entries = _entries(idx, f"product:({product}^3) AND vendor:({escape_query_text('apache')})")
            assert entries == [IndexEntry("apache", "struts2-core")]
            entries = _entries(idx, f"product:({escape_query_text('jetty/http')})")
            assert entries == [IndexEntry("eclipse", "jetty/http")]
