"""NVD yearly feed cache and streaming reader.

Each year's feed (``nvdcve-2.0-<year>.json.gz``) is stored next to its
small ``.meta`` descriptor.  The descriptor's mtime is the freshness
timestamp: a feed refreshed within ``max_age_hours`` is reused without
touching the network, otherwise the remote descriptor decides whether the
feed body has to be downloaded again.

All network I/O of the vulnerability phase is isolated here.  Failing to
obtain any year is fatal: skipping a year would silently under-report.
"""

import datetime as dt
import gzip
import re
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import ijson
import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from . import __version__
from .config import FeedSettings
from .errors import FeedAcquisitionError, ParseError
from .models import Constraint, ProductEntry, VulnerabilityRecord

DEFAULT_HTTP_TIMEOUT = (10, 300)  # (connect, read)

_CPE_SPLIT_RE = re.compile(r"(?<!\\):")

_RANGE_BOUNDS = (
    ("versionStartIncluding", ">="),
    ("versionStartExcluding", ">"),
    ("versionEndIncluding", "<="),
    ("versionEndExcluding", "<"),
)


def requests_session() -> requests.Session:
    """Create a requests session for feed downloads.

    Returns:
        Configured ``requests.Session``.
    """
    s = requests.Session()
    s.headers.update(
        {
            "User-Agent": f"PkgRadar/{__version__}",
            "Accept": "*/*",
        }
    )
    return s


def _atomic_write_bytes(path: Path, data: bytes) -> None:
    tmp = path.with_name(path.name + ".tmp")
    with tmp.open("wb") as f:
        f.write(data)
    tmp.replace(path)


# ─────────────────────────────────────────────────────────────────────────────
# Feed entry parsing
# ─────────────────────────────────────────────────────────────────────────────


def _unescape_cpe(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value)


def parse_cpe_match(match: dict[str, Any]) -> ProductEntry | None:
    """Turn one NVD ``cpeMatch`` object into a product entry.

    Args:
        match: A ``cpeMatch`` dict with ``criteria`` and optional
            ``versionStart*`` / ``versionEnd*`` bounds.

    Returns:
        ``ProductEntry`` for vulnerable matches, ``None`` for
        non-vulnerable ones.  A ``*`` version without any bound yields a
        single ``("*", "*")`` constraint: every version is affected.

    Raises:
        ParseError: if ``criteria`` is not a CPE 2.3 string.
    """
    if not match.get("vulnerable", False):
        return None
    criteria = str(match.get("criteria") or "")
    parts = _CPE_SPLIT_RE.split(criteria)
    if len(parts) < 6 or parts[0] != "cpe" or parts[1] != "2.3":
        raise ParseError(f"invalid CPE {criteria!r}")

    product = _unescape_cpe(parts[4])
    version = _unescape_cpe(parts[5])
    constraints: list[Constraint] = []
    if version not in ("*", "-", ""):
        constraints.append(Constraint("=", version))
    # start bounds first: they must hold before an end bound can decide
    for key, op in _RANGE_BOUNDS:
        if match.get(key):
            constraints.append(Constraint(op, str(match[key])))
    if not constraints and version in ("*", ""):
        constraints.append(Constraint("*", "*"))
    return ProductEntry(product=product, constraints=tuple(constraints))


def parse_feed_entry(item: dict[str, Any]) -> VulnerabilityRecord | None:
    """Parse one ``vulnerabilities[]`` element of an NVD 2.0 feed.

    Args:
        item: Raw feed element, ``{"cve": {...}}``.

    Returns:
        ``VulnerabilityRecord``, or ``None`` for rejected entries.

    Raises:
        ParseError: if the entry has no usable identifier or is malformed.
    """
    cve = item.get("cve") if isinstance(item, dict) else None
    if not isinstance(cve, dict):
        raise ParseError("feed entry without 'cve' object")
    cve_id = str(cve.get("id") or "").strip().upper()
    if not cve_id.startswith("CVE-"):
        raise ParseError(f"invalid identifier {cve_id!r}")
    if cve.get("vulnStatus") == "Rejected":
        return None

    entries: list[ProductEntry] = []
    try:
        for config in cve.get("configurations") or []:
            for node in config.get("nodes") or []:
                for match in node.get("cpeMatch") or []:
                    entry = parse_cpe_match(match)
                    if entry is not None:
                        entries.append(entry)
    except AttributeError as e:
        raise ParseError(f"{cve_id}: malformed configurations") from e
    return VulnerabilityRecord(cve_id=cve_id, entries=tuple(entries))


# ─────────────────────────────────────────────────────────────────────────────
# Feed files
# ─────────────────────────────────────────────────────────────────────────────


class FeedFile:
    """One cached year of the NVD feed.

    Records are exposed through a single-pass cursor: ``records()`` may be
    iterated only once per run, and holds at most one decompressed stream
    open while doing so.

    Attributes:
        year: Feed year.
        path: Path of the gzipped JSON feed.
        meta_path: Path of the ``.meta`` descriptor.
    """

    def __init__(self, year: int, path: Path, meta_path: Path):
        self.year = year
        self.path = path
        self.meta_path = meta_path
        self._consumed = False
        self.skipped = 0

    def invalidate(self) -> None:
        """Drop the descriptor so the next run downloads the feed again."""
        self.meta_path.unlink(missing_ok=True)

    def records(self) -> Iterator[VulnerabilityRecord]:
        """Stream the feed's vulnerability records.

        Malformed entries are counted in ``skipped`` and ignored.

        Yields:
            ``VulnerabilityRecord`` objects in feed order.

        Raises:
            RuntimeError: if the feed was already parsed during this run.
            FeedAcquisitionError: if the cached file is corrupt.
        """
        if self._consumed:
            raise RuntimeError(f"NVD feed {self.year} was already parsed")
        self._consumed = True
        try:
            with gzip.open(self.path, "rb") as f:
                for item in ijson.items(f, "vulnerabilities.item"):
                    try:
                        record = parse_feed_entry(item)
                    except ParseError:
                        self.skipped += 1
                        continue
                    if record is not None:
                        yield record
        except (OSError, EOFError, ijson.JSONError) as e:
            self.invalidate()
            raise FeedAcquisitionError(self.year, f"corrupt cached feed {self.path.name}: {e}") from e


# ─────────────────────────────────────────────────────────────────────────────
# Cache manager
# ─────────────────────────────────────────────────────────────────────────────


class FeedCache:
    """Keeps a local, current copy of every yearly NVD feed.

    Args:
        settings: Cache directory, base URL, start year, max age and retries.
        session: Optional requests session (one is created otherwise).
        clock: Returns the current POSIX time; replaced in tests.
    """

    def __init__(
        self,
        settings: FeedSettings,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.session = session or requests_session()
        self.clock = clock

    def years(self) -> list[int]:
        current = dt.datetime.fromtimestamp(self.clock()).year
        return list(range(self.settings.start_year, current + 1))

    def _feed_paths(self, year: int) -> tuple[Path, Path]:
        base = self.settings.cache_dir / f"nvdcve-2.0-{year}"
        return base.with_name(base.name + ".json.gz"), base.with_name(base.name + ".meta")

    def _url(self, year: int, suffix: str) -> str:
        return f"{self.settings.base_url}/nvdcve-2.0-{year}{suffix}"

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.settings.retries),
            wait=wait_exponential(multiplier=1, min=1, max=30),
            retry=retry_if_exception_type(requests.RequestException),
            reraise=True,
        )

    def _get_bytes(self, url: str) -> bytes:
        for attempt in self._retrying():
            with attempt:
                r = self.session.get(url, timeout=DEFAULT_HTTP_TIMEOUT)
                r.raise_for_status()
                return r.content
        raise AssertionError("unreachable")

    def _download_to(self, url: str, dest: Path) -> None:
        tmp = dest.with_name(dest.name + ".tmp")
        try:
            for attempt in self._retrying():
                with attempt:
                    with self.session.get(url, stream=True, timeout=DEFAULT_HTTP_TIMEOUT) as r:
                        r.raise_for_status()
                        with tmp.open("wb") as f:
                            for chunk in r.iter_content(chunk_size=1024 * 1024):
                                if chunk:
                                    f.write(chunk)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        tmp.replace(dest)

    def is_fresh(self, year: int) -> bool:
        feed_path, meta_path = self._feed_paths(year)
        if not (feed_path.exists() and meta_path.exists()):
            return False
        age = self.clock() - meta_path.stat().st_mtime
        return age < self.settings.max_age_hours * 3600

    def refresh(self, year: int) -> FeedFile:
        """Make sure the cached feed for ``year`` is current.

        Args:
            year: Feed year.

        Returns:
            ``FeedFile`` pointing at the up-to-date cached copy.

        Raises:
            FeedAcquisitionError: if the descriptor or feed cannot be fetched.
        """
        feed_path, meta_path = self._feed_paths(year)
        feed = FeedFile(year, feed_path, meta_path)

        if self.is_fresh(year):
            age = self.clock() - meta_path.stat().st_mtime
            print(f"  Using cached NVD feed for {year} (age: {age / 3600:.1f}h)")
            return feed

        try:
            meta = self._get_bytes(self._url(year, ".meta"))
        except requests.RequestException as e:
            raise FeedAcquisitionError(year, f"cannot fetch descriptor: {e}") from e

        if feed_path.exists() and meta_path.exists() and meta_path.read_bytes() == meta:
            print(f"  NVD feed for {year} unchanged upstream")
            _atomic_write_bytes(meta_path, meta)
            return feed

        print(f"  Downloading NVD feed for {year}...")
        try:
            self._download_to(self._url(year, ".json.gz"), feed_path)
        except requests.RequestException as e:
            raise FeedAcquisitionError(year, f"cannot download feed: {e}") from e
        # the descriptor goes last: a crash before this line forces a re-download
        _atomic_write_bytes(meta_path, meta)
        return feed

    def acquire_all(self) -> list[FeedFile]:
        """Refresh every year from ``start_year`` to the current year.

        Returns:
            Feed files in increasing year order.

        Raises:
            FeedAcquisitionError: on the first year that cannot be obtained.
        """
        self.settings.cache_dir.mkdir(parents=True, exist_ok=True)
        return [self.refresh(year) for year in self.years()]
