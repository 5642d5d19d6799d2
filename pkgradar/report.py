"""Report generation.

Writes the finished status tables as a JSON document and as a
GitHub-renderable Markdown summary using Jinja2.  The default template
lives at ``pkgradar/templates/report.md.j2``.
"""

import datetime as dt
import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .models import CheckKind, Package

_TEMPLATES_DIR = Path(__file__).parent / "templates"


def _now_utc_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat()


def _write_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        f.write(text)
    tmp.replace(path)


def package_to_dict(pkg: Package) -> dict[str, Any]:
    """Serialize a package and its results to plain JSON types."""
    latest = pkg.latest_version
    return {
        "name": pkg.name,
        "path": pkg.path,
        "infras": [list(i) for i in pkg.infras],
        "current_version": pkg.current_version,
        "latest_version": (
            {"status": latest.status.value, "version": latest.version, "id": latest.project_id}
            if latest is not None
            else None
        ),
        "status": {kind.value: list(pkg.status[kind].to_pair()) for kind in CheckKind if kind in pkg.status},
        "cves": sorted(pkg.cves),
        "unsure_cves": sorted(pkg.unsure_cves),
        "ignore_cves": sorted(pkg.ignore_cves),
    }


def write_json_report(
    path: Path,
    packages: Sequence[Package],
    stats: dict[str, int],
    date: str | None = None,
    commit: str | None = None,
) -> None:
    """Write all per-package results and counters as JSON.

    The document has exactly four top-level keys: ``packages``, ``stats``,
    ``date`` and ``commit``.

    Args:
        path: Output file.
        packages: Packages with a complete status map.
        stats: Counters from ``calculate_stats``.
        date: ISO timestamp; defaults to now (UTC).
        commit: Revision of the catalog the manifest was extracted from.
    """
    doc = {
        "packages": {pkg.name: package_to_dict(pkg) for pkg in packages},
        "stats": stats,
        "date": date or _now_utc_iso(),
        "commit": commit,
    }
    _write_atomic(path, json.dumps(doc, indent=2, sort_keys=True) + "\n")


def write_markdown_report(
    path: Path,
    packages: Sequence[Package],
    stats: dict[str, int],
    generated_at: str | None = None,
) -> None:
    """Write a Markdown summary using Jinja2.

    Args:
        path: Output file.
        packages: Packages with a complete status map.
        stats: Counters from ``calculate_stats``.
        generated_at: ISO timestamp; defaults to now (UTC).
    """
    vulnerable = sorted((p for p in packages if p.cves), key=lambda p: (-len(p.cves), p.name))
    unsure = sorted((p for p in packages if p.unsure_cves and not p.cves), key=lambda p: p.name)
    outdated = sorted(
        (p for p in packages if p.is_status_error(CheckKind.VERSION) and p.latest_version and p.latest_version.version),
        key=lambda p: p.name,
    )

    env = Environment(
        loader=FileSystemLoader(str(_TEMPLATES_DIR)),
        autoescape=select_autoescape(default_for_string=False, default=False),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    template = env.get_template("report.md.j2")
    rendered = template.render(
        generated_at=generated_at or _now_utc_iso(),
        stats=stats,
        infras=sorted((k[len("infra-") :], v) for k, v in stats.items() if k.startswith("infra-")),
        vulnerable=vulnerable,
        unsure=unsure,
        outdated=outdated,
    )
    _write_atomic(path, rendered)
