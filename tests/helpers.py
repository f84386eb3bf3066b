"""Feed builders and fakes shared by the DepRadar tests."""

import gzip
import hashlib
import json
from contextlib import asynccontextmanager
from typing import Any

FEED_BASE = "https://feeds.example.test/nvd"


# ── Feed builders ────────────────────────────────────────────────────────────


def cve_item(
    cve_id: str,
    vendor: str = "apache",
    product: str = "struts",
    version: str = "*",
    last_modified: str = "2024-01-01T00:00:00.000",
    score: float | None = 9.8,
    severity: str = "CRITICAL",
    **bounds: str,
) -> dict[str, Any]:
    """One ``vulnerabilities`` entry with a single vulnerable cpeMatch.

    ``bounds`` accepts NVD keys such as ``versionStartIncluding``.
    """
    match = {
        "vulnerable": True,
        "criteria": f"cpe:2.3:a:{vendor}:{product}:{version}:*:*:*:*:*:*:*",
        "matchCriteriaId": "00000000-0000-0000-0000-000000000000",
    }
    match.update(bounds)
    cve: dict[str, Any] = {
        "id": cve_id,
        "published": "2023-06-01T00:00:00.000",
        "lastModified": last_modified,
        "vulnStatus": "Analyzed",
        "descriptions": [
            {"lang": "es", "value": "Descripción"},
            {"lang": "en", "value": f"Issue in {vendor} {product}."},
        ],
        "weaknesses": [{"source": "nvd@nist.gov", "type": "Primary", "description": [{"lang": "en", "value": "CWE-20"}]}],
        "configurations": [{"nodes": [{"operator": "OR", "negate": False, "cpeMatch": [match]}]}],
        "metrics": {},
    }
    if score is not None:
        cve["metrics"] = {
            "cvssMetricV31": [
                {
                    "source": "nvd@nist.gov",
                    "type": "Primary",
                    "cvssData": {
                        "version": "3.1",
                        "vectorString": "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H",
                        "baseScore": score,
                        "baseSeverity": severity,
                    },
                }
            ]
        }
    return {"cve": cve}


def feed_document(items: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "resultsPerPage": len(items),
        "startIndex": 0,
        "totalResults": len(items),
        "format": "NVD_CVE",
        "version": "2.0",
        "timestamp": "2024-01-02T00:00:00.000",
        "vulnerabilities": items,
    }


def build_payload(document: dict[str, Any], last_modified: str = "2024-01-02T03:00:00-05:00") -> tuple[bytes, str]:
    """Gzip a feed document and write the matching ``.meta`` descriptor."""
    raw = json.dumps(document).encode("utf-8")
    gz = gzip.compress(raw)
    meta = (
        f"lastModifiedDate:{last_modified}\r\n"
        f"size:{len(raw)}\r\n"
        f"zipSize:{len(gz) + 100}\r\n"
        f"gzSize:{len(gz)}\r\n"
        f"sha256:{hashlib.sha256(raw).hexdigest().upper()}\r\n"
    )
    return gz, meta


# ── Fake HTTP client ─────────────────────────────────────────────────────────


class FakeFeedClient:
    """In-memory ``FeedClient`` counting payload downloads.

    ``failures`` maps a URL to a list of exceptions raised on successive
    calls before the stored content is returned.
    """

    def __init__(self) -> None:
        self.texts: dict[str, str] = {}
        self.payloads: dict[str, bytes] = {}
        self.failures: dict[str, list[Exception]] = {}
        self.payload_downloads: list[str] = []
        self.meta_fetches: list[str] = []

    def publish(self, shard_id: str, items: list[dict[str, Any]], last_modified: str = "2024-01-02T03:00:00-05:00") -> None:
        gz, meta = build_payload(feed_document(items), last_modified)
        self.payloads[f"{FEED_BASE}/{shard_id}.json.gz"] = gz
        self.texts[f"{FEED_BASE}/{shard_id}.meta"] = meta

    def _maybe_fail(self, url: str) -> None:
        pending = self.failures.get(url)
        if pending:
            raise pending.pop(0)

    async def fetch_text(self, url: str) -> str:
        self.meta_fetches.append(url)
        self._maybe_fail(url)
        return self.texts[url]

    async def fetch_bytes(self, url: str) -> bytes:
        self.payload_downloads.append(url)
        self._maybe_fail(url)
        return self.payloads[url]

    def factory(self):
        @asynccontextmanager
        async def _open():
            yield self

        return _open
