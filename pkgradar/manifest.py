"""Package manifest loading.

The manifest is produced by the recipe walker / metadata extractor and
lists every package with the handful of attributes the checks consume.
It is loaded once per run into an immutable name → ``PackageInfo``
mapping that is passed by reference into each check.

Example YAML::

    packages:
      - name: busybox
        path: package/busybox/busybox.mk
        infras: [[target, kconfig]]
        version: "1.36.1"
        license: GPL-2.0
        license_files: true
        hash_file: true
        patch_count: 3
        url: https://busybox.net
        ignore_cves:
          - CVE-2022-28391
"""

import json
import re
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError
from .models import Package

_CVE_RE = re.compile(r"^CVE-\d{4}-\d+$")


class PackageInfo(BaseModel):
    """Declared attributes of one package.

    Attributes:
        name: Package name.
        path: Recipe file path relative to the catalog root.
        infras: ``(kind, infra)`` pairs; empty or all-``virtual`` means the
            package builds nothing.
        version: Declared current version.
        license: Declared license identifier(s).
        license_files: Whether license files are declared.
        hash_file: Whether a hash file is present.
        patch_count: Number of patch files shipped with the recipe.
        url: Upstream project URL.
        warnings: Number of static-check warnings reported for the recipe.
        ignore_cves: Vulnerability identifiers known not to apply.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    path: str = Field(min_length=1)
    infras: tuple[tuple[str, str], ...] = ()
    version: str | None = None
    license: str | None = None
    license_files: bool = False
    hash_file: bool = False
    patch_count: int = Field(default=0, ge=0)
    url: str | None = None
    warnings: int = Field(default=0, ge=0)
    ignore_cves: frozenset[str] = frozenset()

    @field_validator("version", "license", "url", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("ignore_cves", mode="before")
    @classmethod
    def _normalize_cves(cls, v: Any) -> Any:
        if v is None:
            return frozenset()
        if isinstance(v, str):
            v = v.split()
        out = set()
        for item in v:
            cve = str(item).strip().upper()
            if _CVE_RE.match(cve):
                out.add(cve)
        return frozenset(out)


class Manifest(BaseModel):
    packages: list[PackageInfo] = Field(default_factory=list)

    @field_validator("packages")
    @classmethod
    def _unique_names(cls, v: list[PackageInfo]) -> list[PackageInfo]:
        seen: set[str] = set()
        for info in v:
            if info.name in seen:
                raise ValueError(f"duplicate package name {info.name!r}")
            seen.add(info.name)
        return v


def load_manifest(path: Path) -> tuple[list[tuple[str, str]], Mapping[str, PackageInfo]]:
    """Load a manifest from a YAML or JSON file.

    Args:
        path: Path to the manifest.

    Returns:
        Tuple of (ordered ``(name, path)`` identities, read-only
        name → ``PackageInfo`` mapping).

    Raises:
        ConfigurationError: if the file is missing or fails validation.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigurationError(f"manifest not found: {path}") from e

    try:
        if path.suffix.lower() == ".json":
            raw = json.loads(content)
        else:
            raw = yaml.safe_load(content) or {}
        manifest = Manifest.model_validate(raw)
    except (json.JSONDecodeError, yaml.YAMLError, ValidationError) as e:
        raise ConfigurationError(f"invalid manifest {path}: {e}") from e

    identities = [(info.name, info.path) for info in manifest.packages]
    index = MappingProxyType({info.name: info for info in manifest.packages})
    return identities, index


def build_packages(
    identities: list[tuple[str, str]],
    index: Mapping[str, PackageInfo],
    only: set[str] | None = None,
    limit: int | None = None,
) -> list[Package]:
    """Create the run's ``Package`` objects in manifest order.

    Args:
        identities: ``(name, path)`` pairs from ``load_manifest``.
        index: Metadata mapping from ``load_manifest``.
        only: Restrict the run to these package names.
        limit: Keep at most this many packages.

    Returns:
        List of fresh ``Package`` instances.
    """
    packages: list[Package] = []
    for name, path in identities:
        if limit is not None and len(packages) >= limit:
            break
        if only is not None and name not in only:
            continue
        info = index[name]
        packages.append(
            Package(
                name=name,
                path=path,
                infras=info.infras,
                current_version=info.version,
                ignore_cves=info.ignore_cves,
            )
        )
    return packages
