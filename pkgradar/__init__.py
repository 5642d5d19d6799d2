"""PkgRadar — package catalog health and vulnerability radar.

This package cross-references the declared version of every package in a
build-recipe catalog against the NVD yearly feeds and against
release-monitoring.org, and folds the outcome into per-package statuses.
"""

__version__ = "0.1.0"
