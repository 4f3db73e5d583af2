"""
Selective extraction from tar.xz / tar.bz2 / tar.zst archives.

Only named entries are pulled out of an archive, optionally dropping leading
path components the way ``tar --strip-components`` does.
"""

import contextlib
import io
import lzma
import os
import tarfile
from collections.abc import Iterator
from pathlib import Path, PurePosixPath

from .errors import ExtractionError


@contextlib.contextmanager
def open_tar(archive_path: Path | str) -> Iterator[tarfile.TarFile]:
    """Open a tar archive for reading, decompressing zstd in memory when needed."""
    archive_path = Path(archive_path)

    if archive_path.name.endswith(".zst"):
        try:
            import zstandard as zstd
        except ImportError as e:
            raise ImportError("zstandard module required!\n" "Install with: pip install zstandard") from e

        with open(archive_path, "rb") as f:
            dctx = zstd.ZstdDecompressor()
            try:
                tar_buffer = io.BytesIO(dctx.stream_reader(f).read())
            except zstd.ZstdError as e:
                raise tarfile.ReadError(f"zstd decompression failed: {e}") from e
        with tarfile.open(fileobj=tar_buffer, mode="r") as tar:
            yield tar
    else:
        with tarfile.open(archive_path, "r:*") as tar:
            yield tar


def _normalize(name: str) -> str:
    return str(PurePosixPath(name.lstrip("/"))).removeprefix("./")


def _matches(name: str, member_path: str) -> bool:
    return name == member_path or name.startswith(member_path + "/")


def extract_members(
    archive_path: Path | str,
    output_dir: Path | str,
    member_paths: list[str],
    strip_components: int = 0,
    stage: str = "extract archive",
) -> list[Path]:
    """
    Extract the given entries (files or whole directories) from an archive.

    Args:
        archive_path: Archive to read
        output_dir: Directory to extract into
        member_paths: Paths inside the archive; a directory pulls in its contents
        strip_components: Number of leading path components to drop
        stage: Step name reported if extraction fails

    Returns:
        Paths of the regular files written

    Raises:
        ExtractionError: The archive is unreadable or an entry is missing. An
            entry present only as a link or device counts as missing.
    """
    archive_path = Path(archive_path)
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    output_root = output_dir.resolve()

    wanted = [_normalize(p) for p in member_paths]
    found: set[str] = set()
    written: list[Path] = []

    try:
        with open_tar(archive_path) as tar:
            for member in tar:
                name = _normalize(member.name)
                matched = [p for p in wanted if _matches(name, p)]
                if not matched:
                    continue
                parts = PurePosixPath(name).parts[strip_components:]
                if not parts:
                    continue
                target = output_dir.joinpath(*parts)
                if ".." in parts or not target.resolve().is_relative_to(output_root):
                    raise ExtractionError(
                        f"Refusing to extract {member.name} outside {output_dir}",
                        stage=stage,
                    )

                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                    found.update(matched)
                elif member.isfile():
                    target.parent.mkdir(parents=True, exist_ok=True)
                    source = tar.extractfile(member)
                    if source is None:
                        raise ExtractionError(f"Cannot read {member.name} from {archive_path.name}", stage=stage)
                    with source, open(target, "wb") as out:
                        while chunk := source.read(1024 * 1024):
                            out.write(chunk)
                    os.chmod(target, member.mode & 0o777)
                    written.append(target)
                    found.update(matched)
                else:
                    print(f"  ⚠️  Skipping non-regular entry: {member.name}")
    except ExtractionError:
        raise
    except (tarfile.TarError, lzma.LZMAError, EOFError, OSError) as e:
        raise ExtractionError(f"Cannot read {archive_path.name}: {e}", stage=stage, status=type(e).__name__) from e

    missing = [p for p in wanted if p not in found]
    if missing:
        raise ExtractionError(
            f"{archive_path.name} is missing expected entries: {', '.join(missing)}",
            stage=stage,
        )

    return written


def list_members(archive_path: Path | str) -> dict[str, int]:
    """Map each entry name in an archive to its permission bits."""
    with open_tar(archive_path) as tar:
        return {_normalize(m.name): m.mode for m in tar.getmembers()}
