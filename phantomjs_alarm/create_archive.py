"""
Create compressed tar archives with correct permissions.

This module:
1. Tars a directory, forcing bin/ entries to be executable
2. Compresses with bzip2 or xz (tarfile) or zstd (zstandard)
3. Verifies that every bin/ entry in the result has its executable bit set
"""

import tarfile
import time
from pathlib import Path

from .destination import ARCHIVE_EXTENSIONS
from .errors import ExtractionError
from .expand_archive import list_members


def tar_filter(tarinfo: tarfile.TarInfo) -> tarfile.TarInfo:
    """Set 0755 on bin/ files and directories, 0644 on everything else."""
    tarinfo.uid = tarinfo.gid = 0
    tarinfo.uname = tarinfo.gname = "root"
    if tarinfo.isdir():
        tarinfo.mode = 0o755
    elif tarinfo.isfile():
        if "/bin/" in tarinfo.name or tarinfo.name.startswith("bin/"):
            tarinfo.mode = 0o755  # rwxr-xr-x
        else:
            tarinfo.mode = 0o644  # rw-r--r--
    return tarinfo


def create_tar_archive(source_dir: Path | str, output_dir: Path | str, archive_name: str, archive_format: str = "bz2", zstd_level: int = 22) -> Path:
    """
    Archive source_dir (as its own top-level directory) into output_dir.

    Args:
        source_dir: Directory to archive
        output_dir: Where to write the archive
        archive_name: File name of the archive, extension included
        archive_format: One of "bz2", "xz", "zst"
        zstd_level: Compression level when archive_format is "zst"

    Returns:
        Path to the compressed archive
    """
    if archive_format not in ARCHIVE_EXTENSIONS:
        raise ValueError(f"Unknown archive format: {archive_format}")

    source_dir = Path(source_dir)
    output_path = Path(output_dir) / archive_name

    print(f"Source: {source_dir}")
    print(f"Output: {output_path}")
    print(f"Format: {ARCHIVE_EXTENSIONS[archive_format]}")

    start = time.time()
    if archive_format == "zst":
        tar_path = output_path.with_suffix("")  # drop .zst for the intermediate tar
        with tarfile.open(tar_path, "w") as tar:
            tar.add(source_dir, arcname=source_dir.name, filter=tar_filter)
        try:
            compress_with_zstd(tar_path, output_path, level=zstd_level)
        finally:
            tar_path.unlink(missing_ok=True)
    else:
        try:
            with tarfile.open(output_path, f"w:{archive_format}") as tar:
                tar.add(source_dir, arcname=source_dir.name, filter=tar_filter)
        except (KeyboardInterrupt, Exception):
            output_path.unlink(missing_ok=True)
            raise

    elapsed = time.time() - start
    print(f"Created: {output_path.name} ({output_path.stat().st_size / (1024*1024):.2f} MB in {elapsed:.1f}s)")
    return output_path


def compress_with_zstd(tar_file: Path | str, output_zst: Path | str, level: int = 22) -> Path:
    """Compress tar with zstd using streaming compression."""
    try:
        import zstandard as zstd
    except ImportError as e:
        raise ImportError("zstandard module required!\n" "Install with: pip install zstandard") from e

    tar_file = Path(tar_file)
    output_zst = Path(output_zst)

    print(f"Compressing with zstd level {level}...")
    try:
        cctx = zstd.ZstdCompressor(level=level, threads=-1)
        with (
            open(tar_file, "rb") as ifh,
            open(output_zst, "wb") as ofh,
            cctx.stream_writer(ofh, closefd=False) as compressor,
        ):
            while chunk := ifh.read(1024 * 1024):
                compressor.write(chunk)
    except (KeyboardInterrupt, Exception):
        output_zst.unlink(missing_ok=True)
        raise

    return output_zst


def verify_tar_permissions(archive_path: Path | str) -> int:
    """
    Check that files under bin/ inside the archive are executable.

    Returns:
        Number of binaries checked

    Raises:
        ExtractionError: No binary was found or one lacks its executable bit
    """
    archive_path = Path(archive_path)
    modes = list_members(archive_path)

    binaries = {name: mode for name, mode in modes.items() if "/bin/" in name and not name.endswith("/bin")}
    issues = [name for name, mode in binaries.items() if not mode & 0o100]

    for name in issues:
        print(f"  ✗ Missing executable permission: {name} (mode: {oct(binaries[name])})")

    if not binaries:
        raise ExtractionError(f"{archive_path.name} contains no bin/ entries", stage="verify archive")
    if issues:
        raise ExtractionError(
            f"{archive_path.name} has {len(issues)} binaries without executable permission",
            stage="verify archive",
        )

    print(f"✓ {len(binaries)} binaries have correct permissions")
    return len(binaries)
