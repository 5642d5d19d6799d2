"""Command-line entry point.

Runs the phases in order: load the manifest, probe upstream URLs, look up
upstream versions, match the NVD feeds, aggregate statuses, write reports.
Per-package failures end up in the reports; configuration and feed
acquisition failures stop the run.
"""

import argparse
import sys
import time
from collections.abc import Mapping, Sequence
from pathlib import Path

from .config import FeedSettings, RunConfig, load_config
from .cve import check_package_cves
from .developers import DeveloperIndex, load_developers
from .errors import ConfigurationError, FeedAcquisitionError
from .feeds import FeedCache
from .manifest import PackageInfo, build_packages, load_manifest
from .models import CheckKind, Package
from .probes import check_package_latest_versions, check_package_urls
from .report import write_json_report, write_markdown_report
from .status import aggregate, calculate_stats


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="pkgradar",
        description="Package catalog health and vulnerability report.",
    )
    p.add_argument("--manifest", type=Path, required=True, help="Package manifest (YAML or JSON)")
    p.add_argument("--developers", type=Path, default=None, help="DEVELOPERS ownership file")
    p.add_argument("--config", type=Path, default=None, help="Run configuration (YAML or JSON)")
    p.add_argument("--json", type=Path, default=None, help="Write the JSON report to this path")
    p.add_argument("--markdown", type=Path, default=None, help="Write the Markdown report to this path")
    p.add_argument("--nvd-path", type=Path, default=None, help="Cache directory for NVD feeds")
    p.add_argument("--commit", default=None, help="Catalog revision recorded in the JSON report")
    p.add_argument(
        "--disable",
        action="append",
        default=None,
        choices=[k.value for k in CheckKind],
        help="Skip a check (repeatable); it is reported as not applicable",
    )
    p.add_argument("-n", dest="limit", type=int, default=None, help="Only check the first N packages")
    p.add_argument("-p", dest="packages", default=None, help="Comma-separated list of packages to check")
    return p


def check_cves(packages: Sequence[Package], settings: FeedSettings) -> None:
    """Acquire every yearly feed, then stream them one at a time.

    Raises:
        FeedAcquisitionError: if any year cannot be obtained.
    """
    cache = FeedCache(settings)
    feeds = cache.acquire_all()
    by_name = {p.name: p for p in packages}
    for feed in feeds:
        count = check_package_cves(feed.records(), by_name)
        skipped = f", {feed.skipped} malformed skipped" if feed.skipped else ""
        print(f"    Matched {count} CVEs from NVD {feed.year} feed{skipped}")


def _load_inputs(args: argparse.Namespace) -> tuple[
    RunConfig, list[tuple[str, str]], Mapping[str, PackageInfo], DeveloperIndex | None
]:
    if args.json is None and args.markdown is None:
        raise ConfigurationError("at least one of --json or --markdown is required")

    feeds_override = {"cache_dir": str(args.nvd_path)} if args.nvd_path else None
    config = load_config(args.config, feeds=feeds_override, disabled_checks=args.disable)
    identities, index = load_manifest(args.manifest)

    developers = None
    if args.developers is not None:
        try:
            developers = load_developers(args.developers)
        except FileNotFoundError as e:
            raise ConfigurationError(f"developers file not found: {args.developers}") from e
        print(f"Loaded {len(developers)} developers from {args.developers}")
    return config, identities, index, developers


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config, identities, index, developers = _load_inputs(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    only = {name.strip() for name in args.packages.split(",") if name.strip()} if args.packages else None
    packages = build_packages(identities, index, only=only, limit=args.limit)
    print(f"Checking {len(packages)} packages")
    started = time.monotonic()

    if config.is_enabled(CheckKind.URL):
        print("Checking upstream URLs...")
        check_package_urls(packages, index, config.probes)
    if config.is_enabled(CheckKind.VERSION):
        print("Looking up upstream versions...")
        check_package_latest_versions(packages, config.probes, config.release_monitoring)
    if config.is_enabled(CheckKind.CVE):
        print("Matching NVD feeds...")
        try:
            check_cves(packages, config.feeds)
        except FeedAcquisitionError as e:
            print(f"  ❌ {e}", file=sys.stderr)
            return 1

    enabled = {k for k in CheckKind if config.is_enabled(k)}
    aggregate(packages, index, developers, enabled)
    stats = calculate_stats(packages, index)

    if args.json is not None:
        write_json_report(args.json, packages, stats, commit=args.commit)
        print(f"Wrote {args.json}")
    if args.markdown is not None:
        write_markdown_report(args.markdown, packages, stats)
        print(f"Wrote {args.markdown}")
    print(f"Done in {time.monotonic() - started:.1f}s")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
