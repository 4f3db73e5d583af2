"""
Repackaging of Arch Linux ARM PhantomJS builds.

This package provides tools for:
- Scraping the Arch Linux ARM mirror for PhantomJS packages
- Validating and comparing ALARM version numbers
- Rebuilding packages in the layout of the official PhantomJS releases
- Maintaining version aliases for the newest ALARM build

Main modules:
- fetch_and_package: Complete pipeline and command-line entry point
- versions: Version validation and listing parsing
- destination: Archived artifacts, presence checks and aliases
- expand_archive: Selective extraction from tar archives
- create_archive: Compressed archive creation and permission checks
"""

from .fetch_and_package import main as fetch_and_package_main

__all__ = ["fetch_and_package_main"]
