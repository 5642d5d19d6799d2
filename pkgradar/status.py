"""Status aggregation.

Turns the declared attributes and the outcome of every check into exactly
one ``CheckResult`` per (package, ``CheckKind``), then folds the packages
into corpus-wide counters.  Pure functions: no I/O, no network.
"""

from collections import defaultdict
from collections.abc import Iterable, Mapping

from .developers import DeveloperIndex
from .manifest import PackageInfo
from .models import CheckKind, CheckResult, Package, VersionLookupStatus

# Checks that validate the build artifact; meaningless for virtual packages.
CONTENT_CHECKS = frozenset(
    {
        CheckKind.LICENSE,
        CheckKind.LICENSE_FILES,
        CheckKind.HASH,
        CheckKind.PATCHES,
        CheckKind.VERSION,
    }
)

COUNTERS = (
    "packages",
    "license",
    "no-license",
    "license-files",
    "no-license-files",
    "hash",
    "no-hash",
    "patches",
    "rmo-mapping",
    "rmo-no-mapping",
    "version-uptodate",
    "version-not-uptodate",
    "version-unknown",
    "total-cves",
    "pkg-cves",
    "total-unsure-cves",
    "pkg-unsure-cves",
    "total-warnings",
)

NOT_CHECKED = CheckResult.not_applicable("not checked")
NO_INFRA = CheckResult.not_applicable("no valid package infrastructure")


def patches_status(count: int) -> CheckResult:
    if count == 0:
        return CheckResult.ok("no patches")
    if count < 5:
        return CheckResult.warning(f"{count} patches")
    return CheckResult.error(f"{count} patches")


def warnings_status(count: int) -> CheckResult:
    if count == 0:
        return CheckResult.ok("no warnings")
    return CheckResult.error(f"{count} warnings")


def developers_status(developers: list[str]) -> CheckResult:
    if developers:
        return CheckResult.ok(f"{len(developers)} developers")
    return CheckResult.warning("no developers")


def version_status(pkg: Package) -> CheckResult:
    """Compare the discovered upstream version with the declared one.

    Args:
        pkg: Package whose ``latest_version`` slot was filled by a probe.

    Returns:
        ``ERROR`` for a failed lookup or a known newer version, ``WARNING``
        when no upstream version could be determined, ``OK`` when up to date.
    """
    latest = pkg.latest_version
    if latest is None:
        return CheckResult.error("no answer from release monitoring (timed out)")
    if latest.status == VersionLookupStatus.ERROR:
        detail = f": {latest.detail}" if latest.detail else ""
        return CheckResult.error(f"release monitoring lookup failed{detail}")
    if latest.status == VersionLookupStatus.NOT_FOUND:
        return CheckResult.warning("package not found on release monitoring")
    if latest.version is None:
        return CheckResult.warning("no upstream version available on release monitoring")
    if pkg.current_version is None:
        return CheckResult.warning(f"no declared version, upstream has {latest.version}")
    if latest.version == pkg.current_version:
        return CheckResult.ok("up-to-date")
    return CheckResult.error(f"version {latest.version} is available upstream")


def cve_status(pkg: Package) -> CheckResult:
    if pkg.current_version is None:
        return CheckResult.not_applicable("no version information available")
    if pkg.cves:
        return CheckResult.error(f"affected by {len(pkg.cves)} CVEs")
    if pkg.unsure_cves:
        return CheckResult.warning(f"possibly affected by {len(pkg.unsure_cves)} CVEs")
    return CheckResult.ok("not affected by CVEs")


def set_static_statuses(
    pkg: Package,
    info: PackageInfo,
    developers: DeveloperIndex | None,
    enabled: Iterable[CheckKind] = tuple(CheckKind),
) -> None:
    """Fill the checks that only depend on declared attributes.

    Args:
        pkg: Package to update.
        info: Its declared attributes.
        developers: Ownership lookup, or ``None`` when not available.
        enabled: Checks requested for this run.
    """
    enabled = frozenset(enabled)
    valid = pkg.has_valid_infra

    static = {
        CheckKind.LICENSE: CheckResult.ok("found") if info.license else CheckResult.error("missing"),
        CheckKind.LICENSE_FILES: CheckResult.ok("found") if info.license_files else CheckResult.error("missing"),
        CheckKind.HASH: CheckResult.ok("found") if info.hash_file else CheckResult.error("missing"),
        CheckKind.PATCHES: patches_status(info.patch_count),
        CheckKind.PKG_CHECK: warnings_status(info.warnings),
    }
    for kind, result in static.items():
        if kind not in enabled:
            pkg.status[kind] = NOT_CHECKED
        elif kind in CONTENT_CHECKS and not valid:
            pkg.status[kind] = NO_INFRA
        else:
            pkg.status[kind] = result

    if CheckKind.DEVELOPERS not in enabled or developers is None:
        pkg.status[CheckKind.DEVELOPERS] = NOT_CHECKED
    else:
        pkg.status[CheckKind.DEVELOPERS] = developers_status(developers.developers_for(pkg.path))


def finalize_statuses(pkg: Package, enabled: Iterable[CheckKind] = tuple(CheckKind)) -> None:
    """Fill the probe-driven checks and guarantee every check has a result.

    A check whose phase was disabled is not-applicable; a check whose phase
    ran without producing a result for this package is an error.

    Args:
        pkg: Package to update.
        enabled: Checks requested for this run.
    """
    enabled = frozenset(enabled)

    if CheckKind.URL not in enabled:
        pkg.status[CheckKind.URL] = NOT_CHECKED
    elif CheckKind.URL not in pkg.status:
        pkg.status[CheckKind.URL] = CheckResult.error("no answer (timed out)")

    if not pkg.has_valid_infra:
        pkg.status[CheckKind.VERSION] = NO_INFRA
    elif CheckKind.VERSION not in enabled:
        pkg.status[CheckKind.VERSION] = NOT_CHECKED
    else:
        pkg.status[CheckKind.VERSION] = version_status(pkg)

    if CheckKind.CVE not in enabled:
        pkg.status[CheckKind.CVE] = NOT_CHECKED
    else:
        pkg.status[CheckKind.CVE] = cve_status(pkg)

    for kind in CheckKind:
        if kind not in pkg.status:
            pkg.status[kind] = CheckResult.error("no result")


def aggregate(
    packages: Iterable[Package],
    index: Mapping[str, PackageInfo],
    developers: DeveloperIndex | None,
    enabled: Iterable[CheckKind] = tuple(CheckKind),
) -> None:
    """Finalize every package's status map after all phases ran."""
    enabled = frozenset(enabled)
    for pkg in packages:
        set_static_statuses(pkg, index[pkg.name], developers, enabled)
        finalize_statuses(pkg, enabled)


def calculate_stats(packages: Iterable[Package], index: Mapping[str, PackageInfo]) -> dict[str, int]:
    """Fold per-package results into corpus-wide counters.

    Args:
        packages: Packages with a complete status map.
        index: Declared attributes (patch and warning counts).

    Returns:
        Dict of counter name → value, e.g. ``{"packages": 3, "total-cves": 2}``.
    """
    stats: dict[str, int] = defaultdict(int)
    for key in COUNTERS:
        stats[key] = 0

    for pkg in packages:
        info = index[pkg.name]
        stats["packages"] += 1
        # host and target variants nearly always share their infra
        stats[f"infra-{pkg.infra_name or 'unknown'}"] += 1

        for kind, key in (
            (CheckKind.LICENSE, "license"),
            (CheckKind.LICENSE_FILES, "license-files"),
            (CheckKind.HASH, "hash"),
        ):
            stats[key if pkg.is_status_ok(kind) else f"no-{key}"] += 1

        latest = pkg.latest_version
        if latest is not None and latest.status == VersionLookupStatus.FOUND_BY_EXACT_NAME:
            stats["rmo-mapping"] += 1
        else:
            stats["rmo-no-mapping"] += 1
        if latest is None or not latest.version:
            stats["version-unknown"] += 1
        elif latest.version == pkg.current_version:
            stats["version-uptodate"] += 1
        else:
            stats["version-not-uptodate"] += 1

        stats["patches"] += info.patch_count
        stats["total-warnings"] += info.warnings
        stats["total-cves"] += len(pkg.cves)
        stats["total-unsure-cves"] += len(pkg.unsure_cves)
        if pkg.cves:
            stats["pkg-cves"] += 1
        if pkg.unsure_cves:
            stats["pkg-unsure-cves"] += 1
    return dict(stats)
