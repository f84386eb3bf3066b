"""Dependency identifiers and CPE name parsing."""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, NamedTuple

from .errors import ValidationError
from .evidence import Confidence

# CPE 2.3 formatted string attribute order after the "cpe:2.3" prefix
CPE23_FIELDS = (
    "part",
    "vendor",
    "product",
    "version",
    "update",
    "edition",
    "language",
    "sw_edition",
    "target_sw",
    "target_hw",
    "other",
)

_NAME_RX = re.compile(r"^[^\s:]+$")


class IdentifierSource(str, Enum):
    """How an identifier was obtained."""

    PACKAGE_MANIFEST = "package-manifest"
    EXACT_MATCH = "exact-match"
    FUZZY_INDEX = "fuzzy-index"
    BEST_GUESS = "best-guess"


class Cpe(NamedTuple):
    """Attributes of a parsed CPE 2.3 name.  Wildcards are kept as ``*``/``-``."""

    part: str
    vendor: str
    product: str
    version: str
    update: str
    edition: str
    language: str
    sw_edition: str
    target_sw: str
    target_hw: str
    other: str


def _split_escaped(text: str) -> list[str]:
    """Split on ``:`` honouring backslash escapes, then unescape each part."""
    parts: list[str] = []
    current: list[str] = []
    escaped = False
    for ch in text:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == ":":
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    if escaped:
        current.append("\\")
    parts.append("".join(current))
    return parts


def parse_cpe23(text: str) -> Cpe:
    """Parse a CPE 2.3 formatted string.

    Missing trailing attributes default to ``*``.  Escaped characters
    (``\\:``, ``\\.``) are unescaped.

    Args:
        text: A string like ``cpe:2.3:a:apache:struts:2.1.2:*:*:*:*:*:*:*``.

    Returns:
        Parsed ``Cpe``.

    Raises:
        ValidationError: if the prefix, part or vendor/product are invalid.
    """
    if not text or not text.lower().startswith("cpe:2.3:"):
        raise ValidationError.malformed_identifier(text, "expected a 'cpe:2.3:' prefix")
    values = _split_escaped(text[len("cpe:2.3:"):])
    if len(values) > len(CPE23_FIELDS):
        raise ValidationError.malformed_identifier(text, "too many attributes")
    values += ["*"] * (len(CPE23_FIELDS) - len(values))
    cpe = Cpe(*values)
    if cpe.part not in ("a", "o", "h", "*"):
        raise ValidationError.malformed_identifier(text, f"unknown part '{cpe.part}'")
    if not cpe.vendor or not cpe.product or cpe.vendor in ("*", "-") or cpe.product in ("*", "-"):
        raise ValidationError.malformed_identifier(text, "vendor and product are required")
    return cpe


def format_cpe23(vendor: str, product: str, version: str | None = None, part: str = "a") -> str:
    """Format vendor/product/version as a CPE 2.3 string (``:`` escaped)."""

    def esc(value: str) -> str:
        return value.replace("\\", "\\\\").replace(":", "\\:")

    fields = [part, esc(vendor), esc(product), esc(version) if version else "*"] + ["*"] * 7
    return "cpe:2.3:" + ":".join(fields)


@dataclass(frozen=True)
class Identifier:
    """A canonical ``vendor:product[:version]`` name for a dependency.

    Equality and hashing use every field, so the same vendor/product found
    at two confidences is kept twice; the matcher keeps the best one.
    """

    vendor: str
    product: str
    version: str | None = None
    confidence: Confidence = Confidence.MEDIUM
    source: IdentifierSource = IdentifierSource.FUZZY_INDEX

    @classmethod
    def parse(
        cls,
        text: str,
        confidence: Confidence = Confidence.MEDIUM,
        source: IdentifierSource = IdentifierSource.PACKAGE_MANIFEST,
    ) -> "Identifier":
        """Parse ``vendor:product[:version]`` or a CPE 2.3 string.

        Raises:
            ValidationError: if the text is not a well-formed identifier.
        """
        text = (text or "").strip()
        if text.lower().startswith("cpe:"):
            cpe = parse_cpe23(text)
            version = cpe.version if cpe.version not in ("*", "-", "") else None
            return cls(cpe.vendor.lower(), cpe.product.lower(), version, confidence, source)

        parts = text.split(":")
        if len(parts) not in (2, 3):
            raise ValidationError.malformed_identifier(text, "expected vendor:product[:version]")
        for label, value in zip(("vendor", "product", "version"), parts):
            if not _NAME_RX.match(value):
                raise ValidationError.malformed_identifier(text, f"empty or invalid {label}")
        version = parts[2] if len(parts) == 3 else None
        return cls(parts[0].lower(), parts[1].lower(), version, confidence, source)

    @property
    def key(self) -> tuple[str, str]:
        """Case-normalized ``(vendor, product)`` used for matching."""
        return self.vendor.lower(), self.product.lower()

    def to_dict(self) -> dict[str, Any]:
        return {
            "vendor": self.vendor,
            "product": self.product,
            "version": self.version,
            "confidence": self.confidence.name,
            "source": self.source.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Identifier":
        return cls(
            vendor=data["vendor"],
            product=data["product"],
            version=data.get("version"),
            confidence=Confidence[data.get("confidence", "MEDIUM")],
            source=IdentifierSource(data.get("source", IdentifierSource.FUZZY_INDEX.value)),
        )

    def to_cpe(self) -> str:
        return format_cpe23(self.vendor, self.product, self.version)

    def __str__(self) -> str:
        if self.version:
            return f"{self.vendor}:{self.product}:{self.version}"
        return f"{self.vendor}:{self.product}"
