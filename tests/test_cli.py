"""Unit tests for pkgradar.cli — argument handling and phase orchestration."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from pkgradar.cli import build_parser, main
from pkgradar.errors import FeedAcquisitionError
from pkgradar.models import CheckKind, CheckResult, LatestVersionRecord, VersionLookupStatus
from pkgradar.probes import PoolReport

MANIFEST = {
    "packages": [
        {
            "name": "busybox",
            "path": "package/busybox/busybox.mk",
            "infras": [["target", "kconfig"]],
            "version": "1.36.1",
            "license": "GPL-2.0",
            "license_files": True,
            "hash_file": True,
            "url": "https://busybox.net",
        },
        {"name": "zlib", "path": "package/zlib/zlib.mk", "infras": [["target", "autotools"]], "version": "1.3"},
        {"name": "skeleton", "path": "package/skeleton/skeleton.mk", "infras": [["target", "virtual"]]},
    ]
}


@pytest.fixture
def manifest(tmp_path: Path) -> Path:
    path = tmp_path / "manifest.yaml"
    path.write_text(yaml.dump(MANIFEST))
    return path


def _fake_urls(packages, index, settings):
    for pkg in packages:
        pkg.status[CheckKind.URL] = CheckResult.ok("valid")
    return PoolReport(total=len(packages), finished=len(packages))


def _fake_versions(packages, probes, rm):
    for pkg in packages:
        if pkg.has_valid_infra:
            pkg.latest_version = LatestVersionRecord(VersionLookupStatus.FOUND_BY_EXACT_NAME, "1.3", 1)
    return PoolReport()


def _fake_cves(packages, settings):
    for pkg in packages:
        if pkg.name == "busybox":
            pkg.cves.append("CVE-2022-48174")


# ── build_parser ─────────────────────────────────────────────────────────────


class TestBuildParser:
    def test_repeatable_disable(self):
        args = build_parser().parse_args(["--manifest", "m.yaml", "--disable", "url", "--disable", "cve"])
        assert args.disable == ["url", "cve"]

    def test_unknown_check_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--manifest", "m.yaml", "--disable", "spelling"])

    def test_manifest_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


# ── main ─────────────────────────────────────────────────────────────────────


class TestMain:
    def test_requires_an_output(self, manifest: Path, capsys):
        assert main(["--manifest", str(manifest)]) == 2
        assert "--json" in capsys.readouterr().err

    def test_missing_manifest(self, tmp_path: Path):
        assert main(["--manifest", str(tmp_path / "nope.yaml"), "--json", str(tmp_path / "out.json")]) == 2

    def test_missing_developers_file(self, manifest: Path, tmp_path: Path):
        argv = ["--manifest", str(manifest), "--developers", str(tmp_path / "DEVELOPERS"), "--json", str(tmp_path / "o")]
        assert main(argv) == 2

    def test_end_to_end(self, manifest: Path, tmp_path: Path):
        out_json = tmp_path / "report.json"
        out_md = tmp_path / "report.md"
        with patch("pkgradar.cli.check_package_urls", side_effect=_fake_urls), patch(
            "pkgradar.cli.check_package_latest_versions", side_effect=_fake_versions
        ), patch("pkgradar.cli.check_cves", side_effect=_fake_cves):
            rc = main(
                [
                    "--manifest",
                    str(manifest),
                    "--json",
                    str(out_json),
                    "--markdown",
                    str(out_md),
                    "--nvd-path",
                    str(tmp_path / "nvd"),
                    "--commit",
                    "4f2a9c1",
                ]
            )

        assert rc == 0
        doc = json.loads(out_json.read_text())
        assert doc["commit"] == "4f2a9c1"
        busybox = doc["packages"]["busybox"]["status"]
        assert busybox["cve"][0] == "error"
        assert busybox["version"][0] == "error"
        assert doc["packages"]["zlib"]["status"]["version"] == ["ok", "up-to-date"]
        assert doc["packages"]["skeleton"]["status"]["version"][0] == "na"
        for pkg in doc["packages"].values():
            assert set(pkg["status"]) == {k.value for k in CheckKind}
        assert "busybox" in out_md.read_text()

    def test_disabled_phases_not_run(self, manifest: Path, tmp_path: Path):
        out_json = tmp_path / "report.json"
        with patch("pkgradar.cli.check_package_urls") as urls, patch(
            "pkgradar.cli.check_package_latest_versions"
        ) as versions, patch("pkgradar.cli.check_cves") as cves:
            rc = main(
                [
                    "--manifest",
                    str(manifest),
                    "--json",
                    str(out_json),
                    "--disable",
                    "url",
                    "--disable",
                    "version",
                    "--disable",
                    "cve",
                ]
            )

        assert rc == 0
        urls.assert_not_called()
        versions.assert_not_called()
        cves.assert_not_called()
        status = json.loads(out_json.read_text())["packages"]["zlib"]["status"]
        assert status["url"] == ["na", "not checked"]
        assert status["version"] == ["na", "not checked"]
        assert status["cve"] == ["na", "not checked"]

    def test_package_selection(self, manifest: Path, tmp_path: Path):
        out_json = tmp_path / "report.json"
        with patch("pkgradar.cli.check_package_urls", side_effect=_fake_urls), patch(
            "pkgradar.cli.check_package_latest_versions", side_effect=_fake_versions
        ), patch("pkgradar.cli.check_cves", side_effect=_fake_cves):
            assert main(["--manifest", str(manifest), "--json", str(out_json), "-p", "zlib, skeleton", "-n", "1"]) == 0
        assert list(json.loads(out_json.read_text())["packages"]) == ["zlib"]

    def test_feed_failure_aborts(self, manifest: Path, tmp_path: Path, capsys):
        out_json = tmp_path / "report.json"
        with patch("pkgradar.cli.check_package_urls", side_effect=_fake_urls), patch(
            "pkgradar.cli.check_package_latest_versions", side_effect=_fake_versions
        ), patch("pkgradar.cli.check_cves", side_effect=FeedAcquisitionError(2019, "HTTP 503")):
            assert main(["--manifest", str(manifest), "--json", str(out_json)]) == 1
        assert not out_json.exists()
        assert "NVD feed 2019" in capsys.readouterr().err

    def test_developers_loaded(self, manifest: Path, tmp_path: Path, capsys):
        developers = tmp_path / "DEVELOPERS"
        developers.write_text("N:\tAlice Example <alice@example.org>\nF:\tpackage/zlib/\n")
        out_json = tmp_path / "report.json"
        argv = ["--manifest", str(manifest), "--developers", str(developers), "--json", str(out_json)]
        argv += ["--disable", "url", "--disable", "version", "--disable", "cve"]
        assert main(argv) == 0
        assert "Loaded 1 developers" in capsys.readouterr().out
        doc = json.loads(out_json.read_text())
        assert doc["packages"]["zlib"]["status"]["developers"] == ["ok", "1 developers"]
        assert doc["packages"]["busybox"]["status"]["developers"][0] == "warning"
