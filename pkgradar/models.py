"""Core data model shared by the checks and the aggregator.

A ``Package`` is created once per run from the manifest and is filled in
by the checks.  Each check writes only its own ``CheckKind`` slot of
``Package.status``, so checks never need to coordinate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class CheckKind(str, Enum):
    """The fixed set of per-package checks, keyed by their report name."""

    CVE = "cve"
    DEVELOPERS = "developers"
    HASH = "hash"
    LICENSE = "license"
    LICENSE_FILES = "license-files"
    PATCHES = "patches"
    PKG_CHECK = "pkg-check"
    URL = "url"
    VERSION = "version"


class Status(str, Enum):
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"
    NOT_APPLICABLE = "na"


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one check for one package.

    Attributes:
        status: One of the four ``Status`` values.
        detail: Short human-readable explanation (e.g. ``"3 warnings"``).
    """

    status: Status
    detail: str = ""

    @classmethod
    def ok(cls, detail: str = "") -> CheckResult:
        return cls(Status.OK, detail)

    @classmethod
    def warning(cls, detail: str = "") -> CheckResult:
        return cls(Status.WARNING, detail)

    @classmethod
    def error(cls, detail: str = "") -> CheckResult:
        return cls(Status.ERROR, detail)

    @classmethod
    def not_applicable(cls, detail: str = "") -> CheckResult:
        return cls(Status.NOT_APPLICABLE, detail)

    def to_pair(self) -> tuple[str, str]:
        return self.status.value, self.detail


class VersionLookupStatus(str, Enum):
    """How (or whether) the upstream version of a package was discovered."""

    ERROR = "error"
    FOUND_BY_EXACT_NAME = "found-by-exact-name"
    FOUND_BY_FUZZY_PATTERN = "found-by-fuzzy-pattern"
    NOT_FOUND = "not-found"


@dataclass(frozen=True)
class LatestVersionRecord:
    """Result of an upstream-version lookup.

    Attributes:
        status: Discovery status.
        version: Latest upstream version, when one was published.
        project_id: release-monitoring.org project id, when found.
        detail: Error text for ``ERROR`` lookups.
    """

    status: VersionLookupStatus
    version: str | None = None
    project_id: int | None = None
    detail: str = ""


class Decision(str, Enum):
    """Whether a vulnerability record applies to a package."""

    AFFECTS = "affects"
    DOES_NOT_AFFECT = "does-not-affect"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Constraint:
    """A single ``(operator, bound)`` version constraint, e.g. ``("<=", "2.0")``."""

    operator: str
    bound: str


@dataclass(frozen=True)
class ProductEntry:
    """One affected-product entry of a vulnerability record.

    Attributes:
        product: Product name as published in the feed (CPE product field).
        constraints: Version constraints, evaluated in feed order.
    """

    product: str
    constraints: tuple[Constraint, ...] = ()


@dataclass(frozen=True)
class VulnerabilityRecord:
    """A parsed feed entry.

    Attributes:
        cve_id: Identifier such as ``CVE-2024-12345``.
        entries: Affected product entries in feed order.
    """

    cve_id: str
    entries: tuple[ProductEntry, ...] = ()

    @property
    def products(self) -> frozenset[str]:
        """Set of affected product names."""
        return frozenset(e.product for e in self.entries)

    def entries_for(self, product: str) -> list[ProductEntry]:
        return [e for e in self.entries if e.product == product]


@dataclass(eq=False)
class Package:
    """A package of the catalog and everything the checks learned about it.

    Attributes:
        name: Package name (also the product name matched against feeds).
        path: Path of the recipe file, used for the developer lookup.
        infras: ``(kind, infra)`` pairs such as ``("target", "autotools")``.
        current_version: Declared version, ``None`` for virtual packages.
        ignore_cves: Identifiers known not to apply to this package.
        latest_version: Upstream lookup result, once probed.
        cves: Identifiers confirmed to affect the package.
        unsure_cves: Identifiers whose versions could not be compared.
        status: One ``CheckResult`` per ``CheckKind`` once the run is done.
    """

    name: str
    path: str
    infras: tuple[tuple[str, str], ...] = ()
    current_version: str | None = None
    ignore_cves: frozenset[str] = frozenset()
    latest_version: LatestVersionRecord | None = None
    cves: list[str] = field(default_factory=list)
    unsure_cves: list[str] = field(default_factory=list)
    status: dict[CheckKind, CheckResult] = field(default_factory=dict)

    @property
    def has_valid_infra(self) -> bool:
        """True if at least one declared infra produces a buildable artifact."""
        return any(infra != "virtual" for _, infra in self.infras)

    @property
    def infra_name(self) -> str | None:
        """The first declared infra; host and target variants almost always agree."""
        if not self.infras:
            return None
        return self.infras[0][1]

    def is_status_ok(self, kind: CheckKind) -> bool:
        result = self.status.get(kind)
        return result is not None and result.status == Status.OK

    def is_status_error(self, kind: CheckKind) -> bool:
        result = self.status.get(kind)
        return result is not None and result.status == Status.ERROR

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Package) and self.path == other.path

    def __hash__(self) -> int:
        return hash(self.path)
