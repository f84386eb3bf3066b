"""Findings serialization.

Writes scan findings as JSON for downstream report renderers and triage
tooling.  Rendering (HTML, Markdown, SARIF) is left to those consumers.
"""

import datetime as dt
import json
from pathlib import Path
from typing import Any, Iterable

from . import __version__
from .evidence import Dependency


def _now_utc_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat()


def dependency_summary(dependency: Dependency) -> dict[str, Any]:
    """Serializable view of one dependency and its findings."""
    return {
        "file_name": dependency.file_name,
        "file_path": dependency.file_path,
        "sha256": dependency.sha256,
        "identifiers": [str(i) for i in sorted(dependency.identifiers, key=str)],
        "findings": [f.to_dict() for f in dependency.findings],
    }


def build_findings_document(dependencies: Iterable[Dependency]) -> dict[str, Any]:
    deps = [dependency_summary(d) for d in dependencies]
    return {
        "generated_at": _now_utc_iso(),
        "engine_version": __version__,
        "dependency_count": len(deps),
        "finding_count": sum(len(d["findings"]) for d in deps),
        "dependencies": deps,
    }


def write_findings_json(path: Path, dependencies: Iterable[Dependency]) -> None:
    """Write findings for ``dependencies`` to ``path`` atomically.

    Args:
        path: Output JSON path.
        dependencies: Analyzed dependencies.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    document = build_findings_document(dependencies)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(document, f, indent=2)
    tmp.replace(path)
