"""Unit tests for depradar.evidence."""

from pathlib import Path

from depradar.evidence import Confidence, Dependency, EvidenceCollection, EvidenceType

# ── Confidence ──────────────────────────────────────────────────────────────


class TestConfidence:
    def test_ordering(self):
        assert Confidence.LOW < Confidence.MEDIUM < Confidence.HIGH < Confidence.HIGHEST

    def test_descending(self):
        assert Confidence.descending() == [
            Confidence.HIGHEST,
            Confidence.HIGH,
            Confidence.MEDIUM,
            Confidence.LOW,
        ]


# ── EvidenceCollection ──────────────────────────────────────────────────────


def _collection() -> EvidenceCollection:
    c = EvidenceCollection()
    c.add_evidence("pom", "groupid", "org.apache", Confidence.HIGHEST)
    c.add_evidence("manifest", "vendor", "Apache", Confidence.HIGH)
    c.add_evidence("file", "name", "struts", Confidence.MEDIUM)
    c.add_evidence("jar", "package", "opensymphony", Confidence.LOW)
    return c


class TestIterator:
    """Tests for EvidenceCollection.iterator()."""

    def test_threshold_membership(self):
        c = _collection()
        for minimum in Confidence:
            values = [e.value for e in c.iterator(minimum)]
            expected = [e.value for e in c if e.confidence >= minimum]
            assert values == expected

    def test_high_threshold(self):
        c = _collection()
        assert [e.value for e in c.iterator(Confidence.HIGH)] == ["org.apache", "Apache"]

    def test_marks_yielded_items_used(self):
        c = _collection()
        list(c.iterator(Confidence.HIGH))
        assert [e.value for e in c.get_used()] == ["org.apache", "Apache"]

    def test_lazy_marking(self):
        c = _collection()
        it = iter(c.iterator(Confidence.LOW))
        next(it)
        assert [e.value for e in c.get_used()] == ["org.apache"]

    def test_restartable(self):
        c = _collection()
        view = c.iterator(Confidence.MEDIUM)
        assert list(view) == list(view)

    def test_empty_collection(self):
        assert list(EvidenceCollection().iterator(Confidence.LOW)) == []


class TestPeek:
    def test_does_not_mark_used(self):
        c = _collection()
        assert len(list(c.peek(Confidence.LOW))) == 4
        assert c.get_used() == []


class TestUsedEvidence:
    def test_duplicates_tracked_separately(self):
        c = EvidenceCollection()
        first = c.add_evidence("a", "n", "spring", Confidence.HIGH)
        c.add_evidence("b", "n", "other", Confidence.LOW)
        c.add_evidence("a", "n", "spring", Confidence.HIGH)
        assert len(c) == 3
        c.mark_used([first])
        # both equal copies are marked
        assert [e.value for e in c.get_used()] == ["spring", "spring"]

    def test_contains_exact_confidence(self):
        c = _collection()
        assert c.contains(Confidence.MEDIUM)
        c2 = EvidenceCollection()
        c2.add_evidence("a", "n", "x", Confidence.HIGHEST)
        assert not c2.contains(Confidence.HIGH)

    def test_contains_used_string(self):
        c = EvidenceCollection()
        c.add_evidence("m", "n", "Spring_Framework", Confidence.HIGH)
        assert not c.contains_used_string("springframework")
        list(c.iterator())
        assert c.contains_used_string("springframework")
        assert not c.contains_used_string("")

    def test_weightings(self):
        c = EvidenceCollection()
        c.add_weighting("struts")
        c.add_weighting("")
        assert c.weightings == {"struts"}


# ── Dependency ──────────────────────────────────────────────────────────────


class TestDependency:
    def test_file_name_defaulted(self):
        d = Dependency(file_path="/a/b/lib-1.0.jar")
        assert d.file_name == "lib-1.0.jar"

    def test_from_path_hashes(self, tmp_path: Path):
        p = tmp_path / "x.jar"
        p.write_bytes(b"abc")
        d = Dependency.from_path(p)
        assert d.sha256 == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        assert d.sha1 == "a9993e364706816aba3e25717850c26c9cd0d89d"

    def test_evidence_routing(self):
        d = Dependency(file_path="x.jar")
        d.add_evidence(EvidenceType.PRODUCT, "s", "n", "v", Confidence.LOW)
        assert len(d.product_evidence) == 1
        assert len(d.vendor_evidence) == 0
        assert d.evidence(EvidenceType.VERSION) is d.version_evidence

    def test_used_evidence_order(self):
        d = Dependency(file_path="x.jar")
        d.add_evidence(EvidenceType.VERSION, "s", "n", "1.0", Confidence.HIGH)
        d.add_evidence(EvidenceType.VENDOR, "s", "n", "acme", Confidence.HIGH)
        list(d.version_evidence.iterator())
        list(d.vendor_evidence.iterator())
        assert [e.value for e in d.used_evidence()] == ["acme", "1.0"]

    def test_display_name(self):
        assert Dependency(file_path="x.jar").display_name() == "x.jar"
        assert Dependency(file_path="x.jar", name="lib", version="1").display_name() == "lib:1"
