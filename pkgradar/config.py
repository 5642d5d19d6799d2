"""Run configuration models using Pydantic.

Example YAML::

    feeds:
      cache_dir: ~/.cache/pkgradar/nvd
      start_year: 2002
    probes:
      concurrency: 64
      request_timeout: 10
      pool_timeout: 300
    release_monitoring:
      distribution: Buildroot
"""

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import ConfigurationError
from .models import CheckKind

NVD_FEED_BASE_URL = "https://nvd.nist.gov/feeds/json/cve/2.0"
RELEASE_MONITORING_API = "https://release-monitoring.org/api"
NVD_FIRST_YEAR = 2002


class FeedSettings(BaseModel):
    """Where and how the NVD yearly feeds are cached.

    Attributes:
        cache_dir: Directory holding ``nvdcve-2.0-<year>.json.gz`` and
            ``.meta`` files, reused across runs.
        base_url: Feed server base URL.
        start_year: First feed year to ingest.
        max_age_hours: A feed refreshed more recently than this is reused
            without any network request.
        retries: Download attempts before a feed is declared unavailable.
    """

    cache_dir: Path = Field(default_factory=lambda: Path.home() / ".cache" / "pkgradar" / "nvd")
    base_url: str = NVD_FEED_BASE_URL
    start_year: int = Field(default=NVD_FIRST_YEAR, ge=NVD_FIRST_YEAR)
    max_age_hours: float = Field(default=24.0, gt=0)
    retries: int = Field(default=5, ge=1, le=10)

    @field_validator("cache_dir", mode="before")
    @classmethod
    def _expand_user(cls, v: Any) -> Any:
        if isinstance(v, str):
            return Path(v).expanduser()
        return v


class ProbeSettings(BaseModel):
    """Bounds for the concurrent probe pools.

    ``request_timeout`` must be strictly shorter than ``pool_timeout`` so
    that a single slow request can never consume the whole pool budget.
    """

    concurrency: int = Field(default=64, ge=1, le=1024)
    request_timeout: float = Field(default=10.0, gt=0)
    pool_timeout: float = Field(default=300.0, gt=0)
    limit_per_host: int = Field(default=5, ge=0)

    @model_validator(mode="after")
    def _check_timeouts(self) -> "ProbeSettings":
        if self.request_timeout >= self.pool_timeout:
            raise ValueError(
                f"request_timeout ({self.request_timeout}s) must be shorter than pool_timeout ({self.pool_timeout}s)"
            )
        return self


class ReleaseMonitoringSettings(BaseModel):
    api_url: str = RELEASE_MONITORING_API
    distribution: str = "Buildroot"


class RunConfig(BaseModel):
    """Validated run configuration.

    Attributes:
        feeds: NVD feed cache settings.
        probes: Probe pool bounds.
        release_monitoring: Upstream version service settings.
        disabled_checks: Checks skipped for this run; they are reported as
            not-applicable.
    """

    feeds: FeedSettings = Field(default_factory=FeedSettings)
    probes: ProbeSettings = Field(default_factory=ProbeSettings)
    release_monitoring: ReleaseMonitoringSettings = Field(default_factory=ReleaseMonitoringSettings)
    disabled_checks: set[CheckKind] = Field(default_factory=set)

    def is_enabled(self, kind: CheckKind) -> bool:
        return kind not in self.disabled_checks


def _read_document(path: Path) -> Any:
    content = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(content)
    return yaml.safe_load(content) or {}


def load_config(path: Path | None = None, **overrides: Any) -> RunConfig:
    """Load a run configuration from YAML/JSON and apply overrides.

    Args:
        path: Optional configuration file.  ``None`` gives the defaults.
        **overrides: Top-level keys replacing values from the file
            (e.g. ``disabled_checks``).  ``None`` values are ignored.

    Returns:
        Validated ``RunConfig``.

    Raises:
        ConfigurationError: if the file is missing, unreadable or invalid.
    """
    raw: dict[str, Any] = {}
    if path is not None:
        try:
            raw = _read_document(path)
        except FileNotFoundError as e:
            raise ConfigurationError(f"configuration file not found: {path}") from e
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"cannot parse {path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError(f"{path}: expected a mapping at top level")

    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(raw.get(key), dict):
            raw[key] = {**raw[key], **value}
        else:
            raw[key] = value

    try:
        return RunConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e
