"""Concurrent network probes over the package set.

Uses ``aiohttp`` to run one task per package on a bounded pool:

- URL liveness: one GET against the package's upstream URL.
- Upstream version discovery on release-monitoring.org: exact-name lookup
  in the distribution mapping, falling back to a pattern search only when
  the exact lookup reports not-found.

Tasks never share mutable state; each one writes only its own package's
slot (``status[CheckKind.URL]`` or ``latest_version``).  When the pool
timeout expires, unfinished tasks are cancelled and their slot stays
empty; the status aggregator reports those as errors.

Usage from synchronous code::

    from pkgradar.probes import check_package_urls
    report = check_package_urls(packages, index, config.probes)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import aiohttp

from . import __version__
from .config import ProbeSettings, ReleaseMonitoringSettings
from .manifest import PackageInfo
from .models import CheckKind, CheckResult, LatestVersionRecord, Package, VersionLookupStatus


@dataclass
class PoolReport:
    """Summary of one pool run.

    Attributes:
        total: Number of tasks started.
        finished: Number of tasks that completed before the pool timeout.
        timed_out: Names of packages whose task was cancelled.
        elapsed: Wall-clock seconds spent in the pool.
    """

    total: int = 0
    finished: int = 0
    timed_out: list[str] = field(default_factory=list)
    elapsed: float = 0.0


def _headers() -> dict[str, str]:
    return {"User-Agent": f"PkgRadar/{__version__}"}


def _describe(exc: BaseException) -> str:
    msg = str(exc)
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _open_session(settings: ProbeSettings) -> aiohttp.ClientSession:
    """Create the session shared by every task of one pool."""
    connector = aiohttp.TCPConnector(limit_per_host=settings.limit_per_host)
    return aiohttp.ClientSession(
        headers=_headers(),
        timeout=aiohttp.ClientTimeout(total=settings.request_timeout),
        connector=connector,
        trust_env=True,
    )


# ─── Pool ────────────────────────────────────────────────────────────────────


async def run_bounded(
    packages: Sequence[Package],
    probe: Callable[[Package], Awaitable[None]],
    on_failure: Callable[[Package, BaseException], None],
    concurrency: int,
    pool_timeout: float,
) -> PoolReport:
    """Run ``probe`` once per package with at most ``concurrency`` in flight.

    Args:
        packages: Packages to probe.
        probe: Coroutine function writing its result into the package.
        on_failure: Called with the package and exception when ``probe``
            raises; the failure never reaches sibling tasks.
        concurrency: Maximum number of tasks running at once.
        pool_timeout: Seconds after which unfinished tasks are cancelled.

    Returns:
        ``PoolReport`` describing the run.
    """
    started = time.monotonic()
    report = PoolReport(total=len(packages))
    if not packages:
        return report

    sem = asyncio.Semaphore(concurrency)

    async def _guarded(pkg: Package) -> None:
        async with sem:
            try:
                await probe(pkg)
            except Exception as e:
                on_failure(pkg, e)

    tasks = {asyncio.create_task(_guarded(pkg)): pkg for pkg in packages}
    done, pending = await asyncio.wait(tasks, timeout=pool_timeout)
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    report.finished = len(done)
    report.timed_out = sorted(tasks[t].name for t in pending)
    report.elapsed = time.monotonic() - started
    return report


# ─── URL liveness ────────────────────────────────────────────────────────────


async def check_url(session: aiohttp.ClientSession, pkg: Package, url: str) -> None:
    """Probe ``url`` and store the outcome in ``pkg.status[URL]``.

    2xx and 3xx responses are valid; anything else, or any transport
    error, is an error carrying the status or exception text.
    """
    try:
        async with session.get(url) as resp:
            status = resp.status
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        pkg.status[CheckKind.URL] = CheckResult.error(f"invalid ({_describe(e)})")
        return
    if status >= 400:
        pkg.status[CheckKind.URL] = CheckResult.error(f"invalid {status}")
    else:
        pkg.status[CheckKind.URL] = CheckResult.ok("valid")


async def _check_urls(
    packages: Sequence[Package],
    index: Mapping[str, PackageInfo],
    settings: ProbeSettings,
) -> PoolReport:
    targets = []
    for pkg in packages:
        url = index[pkg.name].url if pkg.name in index else None
        if url:
            targets.append((pkg, url))
        else:
            pkg.status[CheckKind.URL] = CheckResult.warning("no upstream URL")
    urls = {pkg.name: url for pkg, url in targets}

    def _failed(pkg: Package, exc: BaseException) -> None:
        pkg.status[CheckKind.URL] = CheckResult.error(f"invalid ({_describe(exc)})")

    async with _open_session(settings) as session:
        return await run_bounded(
            [pkg for pkg, _ in targets],
            lambda pkg: check_url(session, pkg, urls[pkg.name]),
            _failed,
            settings.concurrency,
            settings.pool_timeout,
        )


def check_package_urls(
    packages: Sequence[Package],
    index: Mapping[str, PackageInfo],
    settings: ProbeSettings,
) -> PoolReport:
    """Check every package's upstream URL concurrently.

    Args:
        packages: Packages to check.
        index: Declared attributes, for the upstream URLs.
        settings: Pool bounds.

    Returns:
        ``PoolReport`` for the liveness pool.
    """
    report = asyncio.run(_check_urls(packages, index, settings))
    print(f"  ✅ URL checks: {report.finished}/{report.total} done in {report.elapsed:.1f}s")
    if report.timed_out:
        print(f"  ⚠️ {len(report.timed_out)} URL check(s) timed out")
    return report


# ─── Upstream version discovery ──────────────────────────────────────────────


def _record_from_project(data: dict[str, Any], status: VersionLookupStatus) -> LatestVersionRecord:
    stable = data.get("stable_versions")
    if stable:
        version = stable[0]
    else:
        version = data.get("version")
    return LatestVersionRecord(
        status=status,
        version=str(version) if version else None,
        project_id=data.get("id"),
    )


async def lookup_latest_version(
    session: aiohttp.ClientSession,
    name: str,
    settings: ReleaseMonitoringSettings,
) -> LatestVersionRecord:
    """Find the latest upstream version of ``name`` on release-monitoring.org.

    The distribution mapping is queried first.  Only a 404 from it leads to
    the pattern search, where the lowest-id project with exactly this name
    wins.  Transport failures and other non-200 answers are ``ERROR``.

    Args:
        session: Shared aiohttp session.
        name: Package name.
        settings: API URL and distribution name.

    Returns:
        ``LatestVersionRecord`` for the package.
    """
    exact_url = f"{settings.api_url}/project/{quote(settings.distribution)}/{quote(name)}"
    try:
        async with session.get(exact_url) as resp:
            if resp.status == 200:
                data = await resp.json(content_type=None)
                return _record_from_project(data, VersionLookupStatus.FOUND_BY_EXACT_NAME)
            if resp.status != 404:
                return LatestVersionRecord(VersionLookupStatus.ERROR, detail=f"HTTP {resp.status}")

        async with session.get(f"{settings.api_url}/projects/", params={"pattern": name}) as resp:
            if resp.status != 200:
                return LatestVersionRecord(VersionLookupStatus.ERROR, detail=f"HTTP {resp.status}")
            data = await resp.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        return LatestVersionRecord(VersionLookupStatus.ERROR, detail=_describe(e))

    projects = [p for p in (data.get("projects") or []) if p.get("name") == name and "version" in p]
    if not projects:
        return LatestVersionRecord(VersionLookupStatus.NOT_FOUND)
    projects.sort(key=lambda p: p.get("id") or 0)
    return _record_from_project(
        {"id": projects[0].get("id"), "version": projects[0].get("version")},
        VersionLookupStatus.FOUND_BY_FUZZY_PATTERN,
    )


async def _check_latest_versions(
    packages: Sequence[Package],
    probes: ProbeSettings,
    rm: ReleaseMonitoringSettings,
) -> PoolReport:
    def _failed(pkg: Package, exc: BaseException) -> None:
        pkg.latest_version = LatestVersionRecord(VersionLookupStatus.ERROR, detail=_describe(exc))

    async with _open_session(probes) as session:

        async def _probe(pkg: Package) -> None:
            pkg.latest_version = await lookup_latest_version(session, pkg.name, rm)

        return await run_bounded(packages, _probe, _failed, probes.concurrency, probes.pool_timeout)


def check_package_latest_versions(
    packages: Sequence[Package],
    probes: ProbeSettings,
    rm: ReleaseMonitoringSettings,
) -> PoolReport:
    """Look up the upstream version of every package with a valid infra.

    Args:
        packages: Packages to check; virtual ones are skipped.
        probes: Pool bounds.
        rm: release-monitoring.org settings.

    Returns:
        ``PoolReport`` for the version-discovery pool.
    """
    targets = [p for p in packages if p.has_valid_infra]
    report = asyncio.run(_check_latest_versions(targets, probes, rm))
    print(f"  ✅ Upstream versions: {report.finished}/{report.total} done in {report.elapsed:.1f}s")
    if report.timed_out:
        print(f"  ⚠️ {len(report.timed_out)} version lookup(s) timed out")
    return report
