"""
buildwatch - CI pipeline dashboard backend.

Triggers builds on a Jenkins-compatible CI server, resolves the queued
request to a build number, streams the console output to subscribers and
persists a final record for every completed build.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("buildwatch")
except PackageNotFoundError:
    # Package not installed, fallback to pyproject.toml
    __version__ = "0.1.0"

__author__ = "buildwatch contributors"
