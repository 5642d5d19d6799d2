"""Exception taxonomy for PkgRadar.

``TransportError`` is fatal when it comes from feed acquisition and is
isolated to a single package when it comes from a probe.  ``ParseError``
is always downgraded by callers to an UNKNOWN/ERROR status.
``ConfigurationError`` is raised before any work starts.
"""


class PkgRadarError(Exception):
    """Base class for all PkgRadar errors."""


class TransportError(PkgRadarError):
    """A network request failed, timed out or returned a non-success status."""


class FeedAcquisitionError(TransportError):
    """A yearly vulnerability feed could not be obtained.

    Attributes:
        year: The feed year that failed.
    """

    def __init__(self, year: int, message: str):
        super().__init__(f"NVD feed {year}: {message}")
        self.year = year


class ParseError(PkgRadarError):
    """A version string or feed entry could not be understood."""


class ConfigurationError(PkgRadarError):
    """The run is misconfigured (missing output target, invalid settings)."""
