"""
Version string handling for Arch Linux ARM PhantomJS packages.

ALARM versions look like the upstream PhantomJS version with an optional
repackaging suffix appended by the distribution, e.g. ``2.1.1`` or ``2.1.1-3``.
"""

import re

from .errors import ValidationError

VERSION_PATTERN = re.compile(r"[0-9]+\.[0-9]+\.[0-9]+(-[0-9]+)?")

# Matches: <a href="phantomjs-2.1.1-3-armv7h.pkg.tar.xz">
LISTING_PATTERN_TEMPLATE = r"""<a\s[^>]*?href=["']?(?:[^"'>]*/)?phantomjs-(?P<version>[^"'/<>\s]+?)-{arch}\.pkg\.tar\.xz["'>\s]"""


def is_valid_version(version: str) -> bool:
    """Return True if version is MAJOR.MINOR.PATCH with an optional -N suffix."""
    return VERSION_PATTERN.fullmatch(version) is not None


def validate_version(version: str) -> str:
    """Return version unchanged, or raise ValidationError if it is malformed."""
    if not is_valid_version(version):
        raise ValidationError(
            f"Invalid version number: {version!r} (expected MAJOR.MINOR.PATCH or MAJOR.MINOR.PATCH-N)",
            stage="validate version",
        )
    return version


def strip_suffix(version: str) -> str:
    """Strip the ALARM repackaging suffix: ``2.1.1-3`` -> ``2.1.1``."""
    return version.split("-", 1)[0]


def version_suffix(version: str) -> int | None:
    """Return the repackaging suffix as an int, or None when there is none."""
    if "-" not in version:
        return None
    return int(version.rsplit("-", 1)[1])


def parse_listing(html: str, architecture: str) -> list[str]:
    """
    Extract candidate versions from a mirror directory listing.

    Args:
        html: Body of the listing page
        architecture: Architecture the package file names end with

    Returns:
        Raw version substrings in page order. Duplicates are kept and nothing
        is validated here.
    """
    pattern = re.compile(LISTING_PATTERN_TEMPLATE.format(arch=re.escape(architecture)), re.IGNORECASE)
    return [match.group("version") for match in pattern.finditer(html)]
