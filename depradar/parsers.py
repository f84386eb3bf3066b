"""NVD feed parsing.

Pure functions for decoding shard descriptors (``.meta`` files) and NVD
CVE JSON 2.0 payloads into ``CveRecord`` objects.  No I/O or network
calls; all inputs are in-memory data structures.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterator

from .errors import IntegrityError, PartialDataWarning, ValidationError
from .identifiers import parse_cpe23
from .records import CveRecord, VersionRange

logger = logging.getLogger(__name__)

_META_LINE_RX = re.compile(r"^(\w+)\s*[=:]\s*(.*)$")


def norm(s: str) -> str:
    """Normalize a string for case-insensitive comparison.

    Collapses whitespace, strips, and lowercases.

    Args:
        s: Input string (may be None).

    Returns:
        Normalized lowercase string.
    """
    return re.sub(r"\s+", " ", (s or "").strip().lower())


# ── Shard descriptors ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class FeedMeta:
    """Remote descriptor of one shard payload.

    Attributes:
        last_modified: ``lastModifiedDate`` as published.
        size: Size in bytes of the uncompressed JSON.
        sha256: Hex SHA-256 of the uncompressed JSON (lowercase).
        gz_size: Size of the gzip payload, when declared.
        zip_size: Size of the zip payload, when declared.
    """

    last_modified: str
    size: int
    sha256: str
    gz_size: int | None = None
    zip_size: int | None = None


def _meta_int(shard: str, key: str, value: str | None) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError as e:
        raise IntegrityError.unrecognized_structure(shard, f"descriptor {key} is not a number: {value!r}") from e


def parse_meta(text: str, shard: str = "") -> FeedMeta:
    """Parse a ``.meta`` descriptor.

    Lines are ``key:value`` or ``key=value``; unknown keys and blank lines
    are ignored.

    Args:
        text: Descriptor content.
        shard: Shard id, used in error messages.

    Returns:
        Parsed ``FeedMeta``.

    Raises:
        IntegrityError: if ``lastModifiedDate``, ``size`` or ``sha256`` is
            missing or a size is not a number.
    """
    values: dict[str, str] = {}
    for line in (text or "").splitlines():
        m = _META_LINE_RX.match(line.strip())
        if m:
            values[m.group(1)] = m.group(2).strip()

    missing = [k for k in ("lastModifiedDate", "size", "sha256") if not values.get(k)]
    if missing:
        raise IntegrityError.unrecognized_structure(shard, f"descriptor missing {', '.join(missing)}")

    return FeedMeta(
        last_modified=values["lastModifiedDate"],
        size=_meta_int(shard, "size", values["size"]),
        sha256=values["sha256"].lower(),
        gz_size=_meta_int(shard, "gzSize", values.get("gzSize")),
        zip_size=_meta_int(shard, "zipSize", values.get("zipSize")),
    )


# ── CVE items ───────────────────────────────────────────────────────────────


def pick_best_description(cve: dict[str, Any]) -> str:
    """Select the best English description of an NVD CVE item.

    Prefers English (``en``, ``en-US``, etc.), falls back to the first
    description with a value.

    Args:
        cve: The ``cve`` dict of a feed item.

    Returns:
        Description string, or empty string if none found.
    """
    descs = cve.get("descriptions") or []
    if isinstance(descs, list):
        for d in descs:
            if not isinstance(d, dict):
                continue
            if (d.get("lang") or "").lower().startswith("en") and d.get("value"):
                return str(d.get("value"))
        for d in descs:
            if isinstance(d, dict) and d.get("value"):
                return str(d.get("value"))
    return ""


def extract_cvss(cve: dict[str, Any]) -> tuple[float | None, str | None, str | None]:
    """Extract the best available CVSS score from NVD metrics.

    Tries CVSS v4.0 → v3.1 → v3.0 → v2 in order, preferring the ``Primary``
    (NVD-scored) metric within a version.

    Args:
        cve: The ``cve`` dict of a feed item.

    Returns:
        Tuple of (base_score, base_severity, vector_string).
        All None if no CVSS data found.
    """
    metrics = cve.get("metrics") or {}
    if not isinstance(metrics, dict):
        return None, None, None

    def _from_metric(metric: dict[str, Any]) -> tuple[float, str | None, str | None] | None:
        data = metric.get("cvssData")
        if not isinstance(data, dict):
            return None
        score = data.get("baseScore")
        # v2 keeps its severity next to cvssData
        sev = data.get("baseSeverity") or metric.get("baseSeverity")
        vec = data.get("vectorString")
        if score is None:
            return None
        try:
            return (
                float(score),
                str(sev) if sev is not None else None,
                str(vec) if vec is not None else None,
            )
        except (TypeError, ValueError):
            return None

    for key in ("cvssMetricV40", "cvssMetricV31", "cvssMetricV30", "cvssMetricV2"):
        entries = metrics.get(key)
        if not isinstance(entries, list):
            continue
        ordered = sorted(
            (m for m in entries if isinstance(m, dict)),
            key=lambda m: 0 if m.get("type") == "Primary" else 1,
        )
        for m in ordered:
            parsed = _from_metric(m)
            if parsed:
                return parsed
    return None, None, None


def extract_cwes(cve: dict[str, Any]) -> tuple[str, ...]:
    """Collect distinct ``CWE-*`` ids from the item's weaknesses."""
    found: list[str] = []
    for weakness in cve.get("weaknesses") or []:
        if not isinstance(weakness, dict):
            continue
        for d in weakness.get("description") or []:
            value = (d or {}).get("value") if isinstance(d, dict) else None
            if value and value.startswith("CWE-") and value not in found:
                found.append(value)
    return tuple(found)


def _iter_cpe_matches(nodes: Any) -> Iterator[dict[str, Any]]:
    if not isinstance(nodes, list):
        return
    for node in nodes:
        if not isinstance(node, dict):
            continue
        for match in node.get("cpeMatch") or []:
            if isinstance(match, dict):
                yield match
        # older documents nest children
        yield from _iter_cpe_matches(node.get("children"))


def extract_ranges(cve: dict[str, Any]) -> tuple[VersionRange, ...]:
    """Build version ranges from the vulnerable ``cpeMatch`` entries.

    Non-vulnerable entries (platform context) are ignored, as are entries
    whose ``criteria`` is not a parseable CPE 2.3 name.
    """
    ranges: list[VersionRange] = []
    seen: set[VersionRange] = set()
    for config in cve.get("configurations") or []:
        if not isinstance(config, dict):
            continue
        for match in _iter_cpe_matches(config.get("nodes")):
            if not match.get("vulnerable"):
                continue
            criteria = match.get("criteria") or ""
            try:
                cpe = parse_cpe23(criteria)
            except ValidationError as e:
                logger.debug(f"Ignoring cpeMatch in {cve.get('id')}: {e.message}")
                continue
            vr = VersionRange(
                vendor=cpe.vendor.lower(),
                product=cpe.product.lower(),
                version=cpe.version or "*",
                start_including=match.get("versionStartIncluding"),
                start_excluding=match.get("versionStartExcluding"),
                end_including=match.get("versionEndIncluding"),
                end_excluding=match.get("versionEndExcluding"),
                update=cpe.update or "*",
                target_sw=cpe.target_sw or "*",
                part=cpe.part,
                cpe=criteria,
            )
            if vr not in seen:
                seen.add(vr)
                ranges.append(vr)
    return tuple(ranges)


def parse_cve_item(item: dict[str, Any]) -> CveRecord | None:
    """Parse one entry of the feed's ``vulnerabilities`` list.

    Args:
        item: Raw ``{"cve": {...}}`` dict.

    Returns:
        ``CveRecord``, or None if the item has no usable CVE id.
    """
    if not isinstance(item, dict):
        return None
    cve = item.get("cve")
    if not isinstance(cve, dict):
        return None
    cve_id = str(cve.get("id") or "").strip().upper()
    if not cve_id.startswith("CVE-"):
        return None

    score, severity, vector = extract_cvss(cve)
    return CveRecord(
        id=cve_id,
        description=pick_best_description(cve),
        severity=severity.upper() if severity else None,
        score=score,
        cvss_vector=vector,
        cwe_ids=extract_cwes(cve),
        published=cve.get("published"),
        last_modified=cve.get("lastModified"),
        ranges=extract_ranges(cve),
    )


# ── Whole feeds ─────────────────────────────────────────────────────────────


@dataclass
class FeedParseResult:
    """Records decoded from one shard plus the items that were skipped.

    Rejected CVEs are counted in ``rejected`` but are not warnings.
    """

    shard: str
    records: list[CveRecord] = field(default_factory=list)
    skipped: list[PartialDataWarning] = field(default_factory=list)
    rejected: int = 0


def parse_feed(data: Any, shard: str) -> FeedParseResult:
    """Decode an NVD JSON 2.0 feed document.

    Args:
        data: The loaded JSON document.
        shard: Shard id, for error and warning messages.

    Returns:
        ``FeedParseResult`` with every well-formed record.  Malformed items
        are logged as ``PartialDataWarning`` and skipped.

    Raises:
        IntegrityError: if the document is not a feed at all.
    """
    if not isinstance(data, dict):
        raise IntegrityError.unrecognized_structure(shard, "top level is not an object")
    items = data.get("vulnerabilities")
    if not isinstance(items, list):
        raise IntegrityError.unrecognized_structure(shard, "no 'vulnerabilities' list")

    result = FeedParseResult(shard=shard)
    for position, item in enumerate(items):
        if isinstance(item, dict) and isinstance(item.get("cve"), dict):
            if item["cve"].get("vulnStatus") == "Rejected":
                result.rejected += 1
                continue
        try:
            record = parse_cve_item(item)
        except (TypeError, ValueError, AttributeError) as e:
            record = None
            reason = f"item {position}: {e}"
        else:
            reason = f"item {position} has no CVE id"
        if record is None:
            record_id = None
            if isinstance(item, dict) and isinstance(item.get("cve"), dict):
                record_id = item["cve"].get("id")
            warning = PartialDataWarning(shard, record_id, reason)
            logger.warning(str(warning))
            result.skipped.append(warning)
            continue
        result.records.append(record)
    return result


def cve_year_and_num(cve_id: str) -> tuple[int, int] | None:
    """Extract year and sequence number from a CVE ID.

    Args:
        cve_id: A string like ``CVE-2024-12345``.

    Returns:
        Tuple of (year, number) or None if invalid.
    """
    m = re.match(r"^CVE-(\d{4})-(\d+)$", (cve_id or "").strip(), flags=re.IGNORECASE)
    if not m:
        return None
    return int(m.group(1)), int(m.group(2))
