"""Dependency version parsing and ordering.

Versions are split into parts (numbers, short alpha-number mixes and
trailing qualifiers such as ``rc`` or ``release``) and compared part by
part, numerically where both parts are numbers.  This keeps ``9 < 10``
without requiring the version to follow any one ecosystem's scheme.
"""

import functools
import re
from typing import Iterator

_PART_RX = re.compile(
    r"(\d+[a-z]{1,3}$|[a-z]{1,3}[_-]?\d+|\d+|(rc|release|snapshot|beta|alpha)$)",
    re.IGNORECASE,
)

_VERSION_RX = re.compile(
    r"\d+(\.\d+){1,6}([._-]?(snapshot|release|final|alpha|beta|rc$|[a-zA-Z]{1,3}[_-]?\d{1,8}|[a-z]\b|\d{1,8}\b))?",
    re.IGNORECASE,
)
_SINGLE_VERSION_RX = re.compile(
    r"\d+(\.\d+){0,6}([._-]?(snapshot|release|final|alpha|beta|rc$|[a-zA-Z]{1,3}[_-]?\d{1,8}))?"
)
_PRE_VERSION_RX = re.compile(r"^(.+)[_-](\d+\.\d{1,6})+")

# update qualifiers that NVD records in the CPE "update" slot
UPDATE_QUALIFIER_RX = re.compile(r"^(v|release|final|snapshot|beta|alpha|u|rc|m|20\d\d).*$", re.IGNORECASE)


def _is_number(part: str) -> bool:
    return part.isdigit()


@functools.total_ordering
class DependencyVersion:
    """A version split into comparable parts.

    Example::

        >>> DependencyVersion("2.3.1") > DependencyVersion("2.3")
        True
        >>> DependencyVersion("9") < DependencyVersion("10")
        True
    """

    def __init__(self, version: str | None = None, parts: list[str] | None = None):
        if parts is not None:
            self.parts = list(parts)
        else:
            self.parts = self._split(version)

    @staticmethod
    def _split(version: str | None) -> list[str]:
        if version is None:
            return []
        parts = [m.group(0) for m in _PART_RX.finditer(version.lower())]
        if not parts:
            parts = [version]
        return parts

    def __iter__(self) -> Iterator[str]:
        return iter(self.parts)

    def __len__(self) -> int:
        return len(self.parts)

    def __str__(self) -> str:
        return ".".join(self.parts)

    def __repr__(self) -> str:
        return f"DependencyVersion({str(self)!r})"

    def __hash__(self) -> int:
        # trailing zeros are insignificant for equality
        parts = list(self.parts)
        while len(parts) > 1 and parts[-1] == "0":
            parts.pop()
        return hash(tuple(parts))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DependencyVersion):
            return NotImplemented
        shorter = min(len(self.parts), len(other.parts))
        longer = max(len(self.parts), len(other.parts))
        if shorter == 1 and longer >= 3:
            return False
        for i in range(shorter):
            if self.parts[i] != other.parts[i]:
                return False
        for rest in (self.parts[shorter:], other.parts[shorter:]):
            if any(p != "0" for p in rest):
                return False
        return True

    def __lt__(self, other: "DependencyVersion") -> bool:
        return self.compare(other) < 0

    def compare(self, other: "DependencyVersion") -> int:
        """Three-way comparison: negative, zero or positive."""
        if self == other:
            return 0
        left, right = self.parts, other.parts
        for lpart, rpart in zip(left, right):
            if lpart == rpart:
                continue
            if _is_number(lpart) and _is_number(rpart):
                lnum, rnum = int(lpart), int(rpart)
                if lnum != rnum:
                    return -1 if lnum < rnum else 1
            elif _is_number(lpart) != _is_number(rpart):
                # a release number sorts after a qualifier at the same position
                return 1 if _is_number(lpart) else -1
            else:
                return -1 if lpart < rpart else 1
        if len(left) == len(right):
            return 0
        return -1 if len(left) < len(right) else 1

    def matches_at_least_three_levels(self, other: "DependencyVersion | None") -> bool:
        """Whether the first three parts match and later ones do not exceed ``other``."""
        if other is None:
            return False
        if abs(len(self.parts) - len(other.parts)) >= 3:
            return False
        for i in range(min(len(self.parts), len(other.parts))):
            mine, theirs = self.parts[i], other.parts[i]
            if i >= 3:
                if mine.lower() >= theirs.lower():
                    return False
            elif mine != theirs:
                return False
        return True


def parse_version(text: str | None, first_match_only: bool = False) -> DependencyVersion | None:
    """Find a version number inside free text such as a file name.

    Args:
        text: Text to search.
        first_match_only: Use the first version-like token even when the
            text holds several.

    Returns:
        The parsed version, or ``None`` when none (or an ambiguous pair)
        was found.
    """
    if text is None:
        return None
    if text == "-":
        return DependencyVersion(parts=["-"])
    matches = list(_VERSION_RX.finditer(text))
    version = None
    if matches:
        if len(matches) > 1 and not first_match_only:
            return None
        version = matches[0].group(0)
    else:
        singles = list(_SINGLE_VERSION_RX.finditer(text))
        if not singles or (len(singles) > 1 and not first_match_only):
            return None
        version = singles[0].group(0)
    if version.endswith("-py2") and len(version) > 4:
        version = version[:-4]
    return DependencyVersion(version)


def parse_pre_version(text: str) -> str:
    """Return the name part in front of a version (``struts2-core-2.1.2`` → ``struts2-core``)."""
    if parse_version(text) is None:
        return text
    m = _PRE_VERSION_RX.search(text)
    if m:
        return m.group(1)
    return text


def compare_versions(left: str, right: str) -> int:
    """Compare two version strings; negative, zero or positive."""
    return DependencyVersion(left).compare(DependencyVersion(right))
