"""Unit tests for pkgradar.status — per-check statuses and counters."""

import pytest

from pkgradar.developers import DeveloperIndex, parse_developers
from pkgradar.manifest import PackageInfo
from pkgradar.models import CheckKind, LatestVersionRecord, Package, Status, VersionLookupStatus
from pkgradar.status import (
    aggregate,
    calculate_stats,
    cve_status,
    finalize_statuses,
    patches_status,
    set_static_statuses,
    version_status,
)

DEVELOPERS = parse_developers(
    """
N:\tAlice Example <alice@example.org>
F:\tpackage/foo/

N:\tBob Example <bob@example.org>
F:\tpackage/foo/foo.mk
"""
)

# ── helpers ──────────────────────────────────────────────────────────────────


def _info(name: str = "foo", infra: str = "autotools", **kwargs) -> PackageInfo:
    defaults = dict(
        name=name,
        path=f"package/{name}/{name}.mk",
        infras=[["target", infra]],
        version="1.0",
        license="MIT",
        license_files=True,
        hash_file=True,
    )
    defaults.update(kwargs)
    return PackageInfo(**defaults)


def _pkg(info: PackageInfo) -> Package:
    return Package(name=info.name, path=info.path, infras=info.infras, current_version=info.version)


def _latest(status=VersionLookupStatus.FOUND_BY_EXACT_NAME, version="1.0") -> LatestVersionRecord:
    return LatestVersionRecord(status, version, 1)


# ── patches ──────────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "count,expected",
    [(0, Status.OK), (1, Status.WARNING), (3, Status.WARNING), (4, Status.WARNING), (5, Status.ERROR), (7, Status.ERROR)],
)
def test_patches_thresholds(count, expected):
    assert patches_status(count).status == expected


# ── static checks ────────────────────────────────────────────────────────────


class TestStaticStatuses:
    def test_all_declared(self):
        info = _info(patch_count=3)
        pkg = _pkg(info)
        set_static_statuses(pkg, info, DEVELOPERS)
        assert pkg.status[CheckKind.LICENSE].status == Status.OK
        assert pkg.status[CheckKind.LICENSE_FILES].status == Status.OK
        assert pkg.status[CheckKind.HASH].status == Status.OK
        assert pkg.status[CheckKind.PATCHES].to_pair() == ("warning", "3 patches")
        assert pkg.status[CheckKind.PKG_CHECK].to_pair() == ("ok", "no warnings")
        assert pkg.status[CheckKind.DEVELOPERS].to_pair() == ("ok", "2 developers")

    def test_missing_attributes(self):
        info = _info(license=None, license_files=False, hash_file=False, warnings=2)
        pkg = _pkg(info)
        set_static_statuses(pkg, info, DEVELOPERS)
        assert pkg.status[CheckKind.LICENSE].status == Status.ERROR
        assert pkg.status[CheckKind.LICENSE_FILES].status == Status.ERROR
        assert pkg.status[CheckKind.HASH].status == Status.ERROR
        assert pkg.status[CheckKind.PKG_CHECK].to_pair() == ("error", "2 warnings")

    def test_virtual_package_content_checks_not_applicable(self):
        info = _info("virt", infra="virtual", version=None, license=None, patch_count=9)
        pkg = _pkg(info)
        set_static_statuses(pkg, info, DEVELOPERS)
        finalize_statuses(pkg)
        for kind in (CheckKind.LICENSE, CheckKind.LICENSE_FILES, CheckKind.HASH, CheckKind.PATCHES, CheckKind.VERSION):
            assert pkg.status[kind].status == Status.NOT_APPLICABLE, kind

    def test_no_developers(self):
        info = _info("bar")
        pkg = _pkg(info)
        set_static_statuses(pkg, info, DEVELOPERS)
        assert pkg.status[CheckKind.DEVELOPERS].status == Status.WARNING

    def test_developers_unavailable(self):
        info = _info()
        pkg = _pkg(info)
        set_static_statuses(pkg, info, None)
        assert pkg.status[CheckKind.DEVELOPERS].status == Status.NOT_APPLICABLE

    def test_disabled_check(self):
        info = _info(hash_file=False)
        pkg = _pkg(info)
        enabled = set(CheckKind) - {CheckKind.HASH}
        set_static_statuses(pkg, info, DEVELOPERS, enabled)
        assert pkg.status[CheckKind.HASH].to_pair() == ("na", "not checked")


# ── version ──────────────────────────────────────────────────────────────────


class TestVersionStatus:
    def test_up_to_date(self):
        pkg = _pkg(_info())
        pkg.latest_version = _latest(version="1.0")
        assert version_status(pkg).to_pair() == ("ok", "up-to-date")

    def test_newer_upstream(self):
        pkg = _pkg(_info())
        pkg.latest_version = _latest(version="1.1")
        result = version_status(pkg)
        assert result.status == Status.ERROR
        assert "1.1" in result.detail

    def test_not_found(self):
        pkg = _pkg(_info())
        pkg.latest_version = LatestVersionRecord(VersionLookupStatus.NOT_FOUND)
        assert version_status(pkg).status == Status.WARNING

    def test_found_without_version(self):
        pkg = _pkg(_info())
        pkg.latest_version = _latest(version=None)
        assert version_status(pkg).status == Status.WARNING

    def test_lookup_error(self):
        pkg = _pkg(_info())
        pkg.latest_version = LatestVersionRecord(VersionLookupStatus.ERROR, detail="HTTP 502")
        result = version_status(pkg)
        assert result.status == Status.ERROR
        assert result.detail.endswith("HTTP 502")

    def test_no_answer(self):
        pkg = _pkg(_info())
        assert version_status(pkg).status == Status.ERROR


# ── cve ──────────────────────────────────────────────────────────────────────


class TestCveStatus:
    def test_clean(self):
        assert cve_status(_pkg(_info())).status == Status.OK

    def test_affected(self):
        pkg = _pkg(_info())
        pkg.cves = ["CVE-2024-0001"]
        pkg.unsure_cves = ["CVE-2024-0002"]
        assert cve_status(pkg).status == Status.ERROR

    def test_unsure_only(self):
        pkg = _pkg(_info())
        pkg.unsure_cves = ["CVE-2024-0002"]
        assert cve_status(pkg).status == Status.WARNING

    def test_no_version(self):
        pkg = _pkg(_info(version=None))
        assert cve_status(pkg).status == Status.NOT_APPLICABLE


# ── finalize / aggregate ─────────────────────────────────────────────────────


class TestFinalize:
    def test_absent_probe_result_is_error(self):
        pkg = _pkg(_info())
        finalize_statuses(pkg)
        assert pkg.status[CheckKind.URL].status == Status.ERROR
        assert pkg.status[CheckKind.VERSION].status == Status.ERROR

    def test_disabled_phases_not_applicable(self):
        pkg = _pkg(_info())
        finalize_statuses(pkg, set(CheckKind) - {CheckKind.URL, CheckKind.VERSION, CheckKind.CVE})
        for kind in (CheckKind.URL, CheckKind.VERSION, CheckKind.CVE):
            assert pkg.status[kind].to_pair() == ("na", "not checked")

    def test_existing_url_result_kept(self):
        pkg = _pkg(_info())
        set_static_statuses(pkg, _info(), DEVELOPERS)
        pkg.status[CheckKind.URL] = pkg.status[CheckKind.LICENSE]
        finalize_statuses(pkg)
        assert pkg.status[CheckKind.URL].status == Status.OK

    def test_every_kind_filled(self):
        infos = {i.name: i for i in (_info("foo"), _info("virt", infra="virtual", version=None), _info("bar"))}
        packages = [_pkg(i) for i in infos.values()]
        aggregate(packages, infos, DEVELOPERS)
        for pkg in packages:
            assert set(pkg.status) == set(CheckKind)


# ── stats ────────────────────────────────────────────────────────────────────


class TestCalculateStats:
    def test_counters(self):
        infos = {
            "foo": _info("foo", patch_count=2, warnings=1),
            "bar": _info("bar", hash_file=False, patch_count=1),
            "virt": _info("virt", infra="virtual", version=None),
        }
        packages = [_pkg(i) for i in infos.values()]
        packages[0].latest_version = _latest(version="1.0")
        packages[0].cves = ["CVE-2024-0001", "CVE-2024-0002"]
        packages[1].latest_version = _latest(VersionLookupStatus.FOUND_BY_FUZZY_PATTERN, "2.0")
        packages[1].unsure_cves = ["CVE-2024-0003"]
        aggregate(packages, infos, DEVELOPERS)

        stats = calculate_stats(packages, infos)
        assert stats["packages"] == 3
        assert stats["infra-autotools"] == 2
        assert stats["infra-virtual"] == 1
        assert stats["hash"] == 1
        assert stats["no-hash"] == 2
        assert stats["patches"] == 3
        assert stats["total-warnings"] == 1
        assert stats["rmo-mapping"] == 1
        assert stats["rmo-no-mapping"] == 2
        assert stats["version-uptodate"] == 1
        assert stats["version-not-uptodate"] == 1
        assert stats["version-unknown"] == 1
        assert stats["total-cves"] == 2
        assert stats["pkg-cves"] == 1
        assert stats["total-unsure-cves"] == 1
        assert stats["pkg-unsure-cves"] == 1

    def test_empty(self):
        stats = calculate_stats([], {})
        assert stats["packages"] == 0
        assert stats["total-cves"] == 0
