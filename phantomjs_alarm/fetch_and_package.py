#!/usr/bin/env python3
"""
Fetch and Package PhantomJS for ARM

The PhantomJS project does not publish ARM builds, but Arch Linux ARM does.
This script automates turning those packages into archives laid out like the
official PhantomJS Linux releases:
1. Scrapes the ALARM mirror listing for phantomjs-<version>-<arch>.pkg.tar.xz
2. Validates the scraped version numbers
3. Skips versions that are already archived in the output directory
4. Downloads the ALARM package and extracts the phantomjs binary
5. Downloads the official x86_64 release once per version (README, ChangeLog,
   license, third-party notice and examples)
6. Builds phantomjs-<version>-linux-<arch>/ and compresses it
7. Moves the archive into the output directory
8. Links phantomjs-<version>-linux-<arch>.tar.bz2 to the newest ALARM build

Usage:
    python -m phantomjs_alarm
    python -m phantomjs_alarm http://mirror.archlinuxarm.org
    python -m phantomjs_alarm path/to/phantomjs 1.9.8 armv7h

Requirements:
    - Python 3.10+
    - zstandard module (only for --format zst): pip install zstandard
"""

import argparse
import shutil
import sys
import tempfile
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path

from .create_archive import create_tar_archive, verify_tar_permissions
from .destination import (
    ARCHIVE_EXTENSIONS,
    PROJECT_NAME,
    alias_name,
    already_archived,
    artifact_name,
    output_dir_name,
    publish_artifact,
    should_update_alias,
    update_alias,
)
from .errors import DownloadError, ExtractionError, PackagingError, ScrapeError, ValidationError
from .expand_archive import extract_members
from .versions import is_valid_version, parse_listing, strip_suffix, validate_version

# ============================================================================
# Configuration
# ============================================================================

DEFAULT_OUTPUT_DIR = Path("/data/dist/phantomjs")

# Arch Linux ARM mirror; listings live at <mirror>/<arch>/community/
DEFAULT_MIRROR_URL = "http://mirror.archlinuxarm.org"

# Official PhantomJS releases (source of README, ChangeLog, license and examples)
DEFAULT_RELEASE_URL = "https://bitbucket.org/ariya/phantomjs/downloads/{filename}"

ARCHITECTURES = ("aarch64", "arm", "armv6h", "armv7h")

# Location of the binary inside the ALARM package
PACKAGE_BINARY = "usr/bin/phantomjs"

# Files taken from the official release, relative to its top-level directory
RELEASE_FILES = [
    "examples",
    "LICENSE.BSD",
    "third-party.txt",
    "README.md",
    "ChangeLog",
]

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_UP_TO_DATE = 2


@dataclass
class PackagingConfig:
    """Settings shared by every step of a run."""

    output_dir: Path = DEFAULT_OUTPUT_DIR
    mirror_url: str = DEFAULT_MIRROR_URL
    release_url: str = DEFAULT_RELEASE_URL
    architectures: tuple[str, ...] = ARCHITECTURES
    archive_format: str = "bz2"
    zstd_level: int = 22
    show_progress: bool = True
    check_updates: bool = False

    def listing_url(self, architecture: str) -> str:
        return f"{self.mirror_url.rstrip('/')}/{architecture}/community/"


def package_filename(architecture: str, version: str) -> str:
    return f"{PROJECT_NAME}-{version}-{architecture}.pkg.tar.xz"


@dataclass(frozen=True)
class PackageDescriptor:
    """One fetchable ALARM package."""

    architecture: str
    version: str
    url: str

    @property
    def filename(self) -> str:
        return package_filename(self.architecture, self.version)

    @property
    def dotted_version(self) -> str:
        return strip_suffix(self.version)

    @classmethod
    def from_listing(cls, architecture: str, version: str, listing_url: str) -> "PackageDescriptor":
        return cls(architecture, version, listing_url.rstrip("/") + "/" + package_filename(architecture, version))


# ============================================================================
# Utility Functions
# ============================================================================


def print_section(title: str) -> None:
    """Print a formatted section header."""
    print("\n" + "=" * 70)
    print(title)
    print("=" * 70)


def download_file(url: str, output_path: Path | str, show_progress: bool = True, stage: str = "download") -> None:
    """Download a file with progress indication, following redirects."""
    print(f"Downloading from: {url}")
    print(f"Saving to: {output_path}")

    output_path = Path(output_path)
    breadcrumb_path = Path(str(output_path) + ".downloading")

    # Create breadcrumb file to mark download in progress
    breadcrumb_path.touch()

    def report_progress(block_num: int, block_size: int, total_size: int) -> None:
        if show_progress and total_size > 0:
            downloaded = block_num * block_size
            percent = min(100, (downloaded / total_size) * 100)
            mb_downloaded = downloaded / (1024 * 1024)
            mb_total = total_size / (1024 * 1024)
            print(f"\rProgress: {percent:5.1f}% ({mb_downloaded:6.1f} MB / {mb_total:6.1f} MB)", end="", flush=True)

    try:
        urllib.request.urlretrieve(url, output_path, reporthook=report_progress)
        if show_progress:
            print()  # New line after progress
        breadcrumb_path.unlink(missing_ok=True)
    except (KeyboardInterrupt, Exception) as e:
        # Download interrupted or failed, clean up partial file and breadcrumb
        if output_path.exists():
            output_path.unlink()
        breadcrumb_path.unlink(missing_ok=True)
        if isinstance(e, urllib.error.HTTPError):
            raise DownloadError(f"{url} returned HTTP {e.code}", stage=stage, status=e.code) from e
        if isinstance(e, urllib.error.URLError):
            raise DownloadError(f"Cannot download {url}: {e.reason}", stage=stage, status="connection error") from e
        if isinstance(e, OSError):
            raise DownloadError(f"Cannot download {url}: {e}", stage=stage, status=e.errno) from e
        if isinstance(e, ValueError):
            raise DownloadError(f"Cannot download {url}: {e}", stage=stage) from e
        raise


def fetch_listing(url: str) -> str:
    """Fetch a mirror directory listing page."""
    try:
        with urllib.request.urlopen(url) as response:
            body = response.read()
            charset = response.headers.get_content_charset() or "utf-8"
    except urllib.error.HTTPError as e:
        raise ScrapeError(f"{url} returned HTTP {e.code}", stage="fetch mirror listing", status=e.code) from e
    except urllib.error.URLError as e:
        raise ScrapeError(
            f"Cannot fetch {url}: {e.reason}", stage="fetch mirror listing", status="connection error"
        ) from e
    except (OSError, ValueError) as e:
        raise ScrapeError(f"Cannot fetch {url}: {e}", stage="fetch mirror listing") from e
    return body.decode(charset, errors="replace")


# ============================================================================
# Step 1: Scrape and Validate Versions
# ============================================================================


def scrape_versions(architecture: str, listing_url: str) -> list[str]:
    """
    Find the PhantomJS versions the mirror offers for an architecture.

    Invalid candidates are dropped with a warning. A listing that yields no
    valid version at all is a ScrapeError.
    """
    print_section(f"STEP 1: SCRAPE MIRROR LISTING ({architecture})")
    print(f"Listing: {listing_url}")

    html = fetch_listing(listing_url)
    if not html.strip():
        raise ScrapeError(f"Empty listing page: {listing_url}", stage="scrape versions")

    candidates = parse_listing(html, architecture)
    if not candidates:
        raise ScrapeError(
            f"No {PROJECT_NAME} package for {architecture} found on {listing_url}", stage="scrape versions"
        )

    versions = []
    for candidate in candidates:
        if is_valid_version(candidate):
            versions.append(candidate)
        else:
            print(f"⚠️  Ignoring invalid version scraped from the {architecture} listing: {candidate}")

    if not versions:
        raise ScrapeError(
            f"The version numbers scraped from the ALARM {architecture} mirror were invalid: {', '.join(candidates)}",
            stage="validate version",
        )

    print(f"Found versions: {', '.join(versions)}")
    return versions


# ============================================================================
# Step 2: Download and Unpack the ALARM Package
# ============================================================================


def fetch_package(package: PackageDescriptor, work_dir: Path, show_progress: bool = True) -> Path:
    """Download an ALARM package and extract the phantomjs binary from it."""
    print_section(f"STEP 2: DOWNLOAD ALARM PACKAGE ({package.architecture} {package.version})")

    work_dir.mkdir(parents=True, exist_ok=True)
    package_path = work_dir / package.filename
    download_file(package.url, package_path, show_progress=show_progress, stage="download ALARM package")

    unpack_dir = work_dir / "alarm"
    extract_members(package_path, unpack_dir, [PACKAGE_BINARY], stage="extract ALARM package")
    binary = unpack_dir / PACKAGE_BINARY
    print(f"✓ Extracted binary: {binary}")
    return binary


# ============================================================================
# Step 3: Official Release Files
# ============================================================================


class ReleaseFilesCache:
    """
    Official x86_64 release archives, downloaded at most once per version.

    The archives only supply architecture independent files, so every
    architecture packaged during a run shares them.
    """

    def __init__(self, cache_dir: Path, release_url: str = DEFAULT_RELEASE_URL, show_progress: bool = True):
        self.cache_dir = Path(cache_dir)
        self.release_url = release_url
        self.show_progress = show_progress
        self._archives: dict[str, Path] = {}

    @staticmethod
    def top_level_dir(dotted_version: str) -> str:
        return f"{PROJECT_NAME}-{dotted_version}-linux-x86_64"

    def get(self, dotted_version: str) -> Path:
        """Return the release archive for dotted_version, downloading it on first use."""
        if dotted_version in self._archives:
            print(f"Using cached official release for {dotted_version}")
            return self._archives[dotted_version]

        print_section(f"STEP 3: DOWNLOAD OFFICIAL RELEASE FILES ({dotted_version})")
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        filename = f"{self.top_level_dir(dotted_version)}.tar.bz2"
        archive_path = self.cache_dir / filename
        download_file(
            self.release_url.format(filename=filename, version=dotted_version),
            archive_path,
            show_progress=self.show_progress,
            stage="download official release",
        )
        self._archives[dotted_version] = archive_path
        return archive_path

# ============================================================================
# Step 4: Repackage
# ============================================================================


def repackage(
    architecture: str,
    version: str,
    binary: Path,
    work_dir: Path,
    release_files: ReleaseFilesCache,
    config: PackagingConfig,
) -> Path:
    """
    Build the release-style archive for one package and publish it.

    Returns:
        Path of the archive in the output directory
    """
    dotted = strip_suffix(version)
    release_archive = release_files.get(dotted)

    print_section(f"STEP 4: CONSTRUCT OUTPUT DIRECTORY ({architecture} {version})")
    output_tree = work_dir / output_dir_name(architecture, version)
    if output_tree.exists():
        shutil.rmtree(output_tree)
    bin_dir = output_tree / "bin"
    bin_dir.mkdir(parents=True)

    dest_binary = bin_dir / PROJECT_NAME
    try:
        shutil.copy2(binary, dest_binary)
        dest_binary.chmod(0o755)
    except OSError as e:
        raise ExtractionError(
            f"Cannot copy {binary} into the output directory: {e}", stage="construct output directory", status=e.errno
        ) from e
    print(f"✓ Copied binary to bin/{PROJECT_NAME}")

    top = ReleaseFilesCache.top_level_dir(dotted)
    extract_members(
        release_archive,
        output_tree,
        [f"{top}/{name}" for name in RELEASE_FILES],
        strip_components=1,
        stage="extract official release files",
    )
    print(f"✓ Extracted {', '.join(RELEASE_FILES)}")

    print_section("STEP 5: COMPRESS OUTPUT DIRECTORY")
    try:
        archive = create_tar_archive(
            output_tree,
            work_dir,
            artifact_name(architecture, version, config.archive_format),
            archive_format=config.archive_format,
            zstd_level=config.zstd_level,
        )
    except OSError as e:
        raise PackagingError(
            f"Cannot compress {output_tree.name}: {e}", stage="compress output directory", status=e.errno
        ) from e
    verify_tar_permissions(archive)

    print_section("STEP 6: MOVE TO OUTPUT DIRECTORY")
    try:
        final_path = publish_artifact(archive, config.output_dir)
    except OSError as e:
        raise PackagingError(
            f"Cannot move {archive.name} to {config.output_dir}: {e}", stage="move to output directory", status=e.errno
        ) from e
    print(f"✓ Archive: {final_path}")

    alias = alias_name(architecture, version, config.archive_format)
    if not should_update_alias(config.output_dir, architecture, version, config.archive_format):
        if "-" in version:
            print(f"Leaving {alias} alone: a build with a higher ALARM suffix is already archived")
    elif update_alias(config.output_dir, architecture, version, config.archive_format) is None:
        print(f"⚠️  Not linking {alias}: a packaged artifact already has that name")
    else:
        print(f"✓ Linked {alias} -> {final_path.name}")

    return final_path


# ============================================================================
# Main Pipeline
# ============================================================================


def package_architecture(
    architecture: str, config: PackagingConfig, work_root: Path, release_files: ReleaseFilesCache
) -> list[Path]:
    """Scrape, fetch and repackage every new version for one architecture."""
    listing_url = config.listing_url(architecture)
    versions = scrape_versions(architecture, listing_url)

    packaged = []
    for version in versions:
        if already_archived(config.output_dir, architecture, version, config.archive_format):
            print(f"The {PROJECT_NAME} {version} package for {architecture} has already been archived, skipping.")
            continue

        package = PackageDescriptor.from_listing(architecture, version, listing_url)
        work_dir = work_root / architecture / version
        binary = fetch_package(package, work_dir, show_progress=config.show_progress)
        packaged.append(repackage(architecture, version, binary, work_dir, release_files, config))
    return packaged


def run_sweep(config: PackagingConfig) -> int:
    """Package new mirror builds for every configured architecture."""
    config.output_dir.mkdir(parents=True, exist_ok=True)

    packaged: list[Path] = []
    failures: list[tuple[str, PackagingError]] = []

    with tempfile.TemporaryDirectory(prefix="phantomjs-alarm-") as tmp:
        work_root = Path(tmp)
        release_files = ReleaseFilesCache(work_root / "release", config.release_url, config.show_progress)

        for architecture in config.architectures:
            try:
                packaged.extend(package_architecture(architecture, config, work_root, release_files))
            except PackagingError as e:
                print(f"✗ {architecture}: {e}", file=sys.stderr)
                failures.append((architecture, e))
            except OSError as e:
                error = PackagingError(str(e), stage=f"package {architecture}", status=e.errno)
                print(f"✗ {architecture}: {error}", file=sys.stderr)
                failures.append((architecture, error))

    print_section("SUMMARY")
    for path in packaged:
        print(f"✓ Packaged: {path.name}")
    if not packaged:
        print("No new packages.")
    for architecture, error in failures:
        print(f"✗ {architecture} failed at '{error.stage}': {error.message}", file=sys.stderr)

    if failures:
        return EXIT_ERROR
    if config.check_updates and not packaged:
        return EXIT_UP_TO_DATE
    return EXIT_OK


def run_manual(binary: Path, version: str, architecture: str, config: PackagingConfig) -> int:
    """Package a local binary under an explicit version and architecture."""
    validate_version(version)
    if architecture not in ARCHITECTURES:
        raise ValidationError(
            f"Unknown architecture: {architecture} (expected one of {', '.join(ARCHITECTURES)})",
            stage="validate architecture",
        )
    binary = Path(binary)
    if not binary.is_file():
        raise ValidationError(f"Binary not found: {binary}", stage="validate binary")

    config.output_dir.mkdir(parents=True, exist_ok=True)
    if already_archived(config.output_dir, architecture, version, config.archive_format):
        print(f"The {PROJECT_NAME} {version} package for {architecture} has already been archived.")
        return EXIT_UP_TO_DATE if config.check_updates else EXIT_OK

    with tempfile.TemporaryDirectory(prefix="phantomjs-alarm-") as tmp:
        work_root = Path(tmp)
        release_files = ReleaseFilesCache(work_root / "release", config.release_url, config.show_progress)
        final_path = repackage(architecture, version, binary, work_root / architecture, release_files, config)

    print_section("SUMMARY")
    print(f"✓ Packaged: {final_path.name}")
    return EXIT_OK


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that reports usage errors with exit status 1."""

    def error(self, message: str):  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(EXIT_ERROR, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="phantomjs-alarm",
        description="Repackage Arch Linux ARM PhantomJS builds like the official releases",
        usage="%(prog)s [options] [mirror-url]\n       %(prog)s [options] <binary> <version> <architecture>",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Examples:
  %(prog)s
  %(prog)s {DEFAULT_MIRROR_URL}
  %(prog)s ./phantomjs 1.9.8 armv7h

Architectures: {', '.join(ARCHITECTURES)}

Exit status: 0 success, 1 error, 2 nothing new to package (with --check-updates)
        """,
    )
    parser.add_argument("args", nargs="*", metavar="ARG", help="[mirror-url] or <binary> <version> <architecture>")
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=DEFAULT_OUTPUT_DIR,
        help=f"Directory holding the archives (default: {DEFAULT_OUTPUT_DIR})",
    )
    parser.add_argument(
        "--release-url",
        default=DEFAULT_RELEASE_URL,
        help="URL template for official releases; {filename} and {version} are substituted",
    )
    parser.add_argument(
        "--arch",
        action="append",
        choices=ARCHITECTURES,
        help="Only sweep this architecture (repeatable; default: all)",
    )
    parser.add_argument(
        "--format",
        dest="archive_format",
        choices=sorted(ARCHIVE_EXTENSIONS),
        default="bz2",
        help="Output compression (default: bz2)",
    )
    parser.add_argument("--zstd-level", type=int, default=22, help="Zstd compression level (default: 22)")
    parser.add_argument(
        "--check-updates", action="store_true", help="Exit with status 2 when nothing new was packaged"
    )
    parser.add_argument("--quiet", action="store_true", help="Do not show download progress")
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if len(args.args) not in (0, 1, 3):
        parser.print_usage(sys.stderr)
        print(f"{parser.prog}: error: expected 0, 1 or 3 arguments, got {len(args.args)}", file=sys.stderr)
        sys.exit(EXIT_ERROR)

    config = PackagingConfig(
        output_dir=args.output_dir,
        release_url=args.release_url,
        architectures=tuple(args.arch) if args.arch else ARCHITECTURES,
        archive_format=args.archive_format,
        zstd_level=args.zstd_level,
        show_progress=not args.quiet,
        check_updates=args.check_updates,
    )
    if len(args.args) == 1:
        config.mirror_url = args.args[0]

    print("=" * 70)
    print("PhantomJS ARM Fetch and Package")
    print("=" * 70)
    print(f"Output: {config.output_dir}")
    if len(args.args) == 3:
        print(f"Binary: {args.args[0]}")
        print(f"Version: {args.args[1]}")
        print(f"Architecture: {args.args[2]}")
    else:
        print(f"Mirror: {config.mirror_url}")
        print(f"Architectures: {', '.join(config.architectures)}")
    print("=" * 70)

    try:
        if len(args.args) == 3:
            binary, version, architecture = args.args
            code = run_manual(Path(binary), version, architecture, config)
        else:
            code = run_sweep(config)
    except KeyboardInterrupt:
        print("\n\n❌ OPERATION CANCELLED BY USER", file=sys.stderr)
        sys.exit(130)  # Standard exit code for SIGINT
    except PackagingError as e:
        print(f"\n❌ Error: {e}", file=sys.stderr)
        sys.exit(EXIT_ERROR)
    except Exception as e:
        print(f"\n❌ Error: {e}", file=sys.stderr)
        import traceback

        traceback.print_exc()
        sys.exit(EXIT_ERROR)

    if code == EXIT_OK:
        print("\n✅ Done!")
    sys.exit(code)


if __name__ == "__main__":
    main()
