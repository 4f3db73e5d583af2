"""
The destination directory: archived artifacts and their version aliases.

The directory listing is the only persisted state. An artifact is named
``phantomjs-<version>-linux-<arch>.<ext>`` and an alias
``phantomjs-<dotted version>-linux-<arch>.<ext>`` is a symlink to the artifact
with the highest ALARM suffix for that version.
"""

import os
import shutil
from pathlib import Path

from .versions import is_valid_version, strip_suffix, version_suffix

PROJECT_NAME = "phantomjs"

ARCHIVE_EXTENSIONS = {
    "bz2": "tar.bz2",
    "xz": "tar.xz",
    "zst": "tar.zst",
}


def output_dir_name(architecture: str, version: str) -> str:
    """Top-level directory inside the artifact, matching the official release layout."""
    return f"{PROJECT_NAME}-{strip_suffix(version)}-linux-{architecture}"


def artifact_name(architecture: str, version: str, archive_format: str = "bz2") -> str:
    return f"{PROJECT_NAME}-{version}-linux-{architecture}.{ARCHIVE_EXTENSIONS[archive_format]}"


def alias_name(architecture: str, version: str, archive_format: str = "bz2") -> str:
    return f"{output_dir_name(architecture, version)}.{ARCHIVE_EXTENSIONS[archive_format]}"


def already_archived(output_dir: Path, architecture: str, version: str, archive_format: str = "bz2") -> bool:
    """Check whether the artifact for architecture/version exists in output_dir."""
    path = Path(output_dir) / artifact_name(architecture, version, archive_format)
    return path.is_file() and not path.is_symlink()


def archived_versions(output_dir: Path, architecture: str, archive_format: str = "bz2") -> list[str]:
    """List every version archived for an architecture (aliases excluded)."""
    output_dir = Path(output_dir)
    if not output_dir.is_dir():
        return []

    prefix = f"{PROJECT_NAME}-"
    suffix = f"-linux-{architecture}.{ARCHIVE_EXTENSIONS[archive_format]}"
    versions = []
    for entry in output_dir.iterdir():
        name = entry.name
        if not (name.startswith(prefix) and name.endswith(suffix)) or entry.is_symlink():
            continue
        version = name[len(prefix) : -len(suffix)]
        if is_valid_version(version):
            versions.append(version)
    return versions


def should_update_alias(output_dir: Path, architecture: str, version: str, archive_format: str = "bz2") -> bool:
    """
    Decide whether the alias should point at version's artifact.

    Only suffixed versions get an alias, and only when no archived package of
    the same dotted version has a strictly greater suffix. Suffixes compare
    numerically, so 10 beats 9.
    """
    suffix = version_suffix(version)
    if suffix is None:
        return False

    dotted = strip_suffix(version)
    for other in archived_versions(output_dir, architecture, archive_format):
        if strip_suffix(other) != dotted:
            continue
        other_suffix = version_suffix(other)
        if other_suffix is not None and other_suffix > suffix:
            return False
    return True


def alias_blocked(output_dir: Path, architecture: str, version: str, archive_format: str = "bz2") -> bool:
    """True when a real artifact (an unsuffixed package) already uses the alias name."""
    link_path = Path(output_dir) / alias_name(architecture, version, archive_format)
    return link_path.exists() and not link_path.is_symlink()


def update_alias(output_dir: Path, architecture: str, version: str, archive_format: str = "bz2") -> Path | None:
    """
    Point the dotted-version alias at version's artifact, replacing any previous link.

    Returns None without touching anything when the alias name belongs to a
    real artifact; artifacts are never overwritten.
    """
    output_dir = Path(output_dir)
    target = artifact_name(architecture, version, archive_format)
    link_path = output_dir / alias_name(architecture, version, archive_format)
    if alias_blocked(output_dir, architecture, version, archive_format):
        return None
    tmp_link = output_dir / f".{link_path.name}.link"

    if tmp_link.is_symlink() or tmp_link.exists():
        tmp_link.unlink()
    os.symlink(target, tmp_link)
    os.replace(tmp_link, link_path)
    return link_path


def publish_artifact(archive_path: Path, output_dir: Path) -> Path:
    """
    Move a finished archive into output_dir without exposing a partial file.

    The archive is first copied next to its final location under a hidden
    ``.partial`` name, then renamed in one step.
    """
    archive_path = Path(archive_path)
    output_dir = Path(output_dir)
    final_path = output_dir / archive_path.name
    partial_path = output_dir / f".{archive_path.name}.partial"

    try:
        shutil.copy2(archive_path, partial_path)
        os.replace(partial_path, final_path)
    except (KeyboardInterrupt, Exception):
        partial_path.unlink(missing_ok=True)
        raise

    archive_path.unlink()
    return final_path
