"""Unit tests for depradar.identifiers."""

import pytest

from depradar.errors import ValidationError
from depradar.evidence import Confidence
from depradar.identifiers import Identifier, IdentifierSource, format_cpe23, parse_cpe23

# ── parse_cpe23 ─────────────────────────────────────────────────────────────


class TestParseCpe23:
    """Tests for parse_cpe23()."""

    def test_full_name(self):
        cpe = parse_cpe23("cpe:2.3:a:apache:struts:2.1.2:*:*:*:*:*:*:*")
        assert cpe.part == "a"
        assert cpe.vendor == "apache"
        assert cpe.product == "struts"
        assert cpe.version == "2.1.2"
        assert cpe.target_sw == "*"

    def test_missing_trailing_fields_padded(self):
        cpe = parse_cpe23("cpe:2.3:a:apache:struts")
        assert cpe.version == "*"
        assert cpe.other == "*"

    def test_escaped_colon(self):
        cpe = parse_cpe23(r"cpe:2.3:a:acme:tool\:kit:1.0")
        assert cpe.product == "tool:kit"

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "cpe:/a:apache:struts:2.1.2",
            "cpe:2.3:x:apache:struts",
            "cpe:2.3:a:*:struts",
            "cpe:2.3:a:apache:-",
            "cpe:2.3:a:v:p:1:2:3:4:5:6:7:8:9",
        ],
    )
    def test_invalid(self, text):
        with pytest.raises(ValidationError) as exc:
            parse_cpe23(text)
        assert exc.value.code == "MALFORMED_IDENTIFIER"


class TestFormatCpe23:
    def test_with_version(self):
        assert format_cpe23("apache", "struts", "2.1.2") == "cpe:2.3:a:apache:struts:2.1.2:*:*:*:*:*:*:*"

    def test_escapes_colon(self):
        assert parse_cpe23(format_cpe23("acme", "a:b")).product == "a:b"


# ── Identifier ──────────────────────────────────────────────────────────────


class TestIdentifier:
    def test_parse_short_form(self):
        ident = Identifier.parse("Apache:Struts:2.1.2", Confidence.HIGH)
        assert ident.vendor == "apache"
        assert ident.product == "struts"
        assert ident.version == "2.1.2"
        assert ident.confidence == Confidence.HIGH
        assert ident.source == IdentifierSource.PACKAGE_MANIFEST

    def test_parse_without_version(self):
        assert Identifier.parse("apache:struts").version is None

    def test_parse_cpe(self):
        ident = Identifier.parse("cpe:2.3:a:apache:struts:*:*:*:*:*:*:*:*")
        assert ident.key == ("apache", "struts")
        assert ident.version is None

    @pytest.mark.parametrize("text", ["", "struts", "a::1", "a:b:c:d", "a b:c"])
    def test_parse_invalid(self, text):
        with pytest.raises(ValidationError):
            Identifier.parse(text)

    def test_str(self):
        assert str(Identifier("apache", "struts", "2.1.2")) == "apache:struts:2.1.2"
        assert str(Identifier("apache", "struts")) == "apache:struts"

    def test_dict_round_trip(self):
        ident = Identifier("apache", "struts", "2.1.2", Confidence.HIGHEST, IdentifierSource.BEST_GUESS)
        assert Identifier.from_dict(ident.to_dict()) == ident

    def test_confidence_distinguishes(self):
        a = Identifier("apache", "struts", confidence=Confidence.HIGH)
        b = Identifier("apache", "struts", confidence=Confidence.LOW)
        assert len({a, b}) == 2
        assert a.key == b.key

    def test_to_cpe(self):
        assert Identifier("apache", "struts").to_cpe() == "cpe:2.3:a:apache:struts:*:*:*:*:*:*:*:*"
