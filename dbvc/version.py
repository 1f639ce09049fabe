"""
Version information for the database version control engine.
"""

from typing import Tuple

# Current package version
__version__ = "0.1.0"

VERSION_MAJOR = 0
VERSION_MINOR = 1
VERSION_PATCH = 0


def get_version() -> str:
    """Get the full version string."""
    return __version__


def get_version_info() -> Tuple[int, int, int]:
    """Get version components as a tuple."""
    return (VERSION_MAJOR, VERSION_MINOR, VERSION_PATCH)
