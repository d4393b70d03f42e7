"""Git LFS object carry-through.

The source side copies the local LFS object cache next to the bundle; the
destination side copies it back into the working copy's cache before the
objects are pushed to the destination remote. Objects keep their
content-hash layout (``ab/cd/abcd...``), so copies are idempotent.
"""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME, GIT_DIR_NAME, LFS_DIR_NAME
from .errors import GitError
from .git_wrapper import GitRepo

logger = logging.getLogger(APP_NAME)


@dataclass
class LfsStats:
    """Count and total size of the objects copied."""

    count: int = 0
    size: int = 0

    def describe(self) -> str:
        return f"{self.count} LFS object(s) ({_human_size(self.size)})"


def _human_size(num: int) -> str:
    size = float(num)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}GB"


def objects_dir(repo_path: Path) -> Path:
    """The LFS object cache of a working copy."""
    return repo_path / GIT_DIR_NAME / "lfs" / "objects"


def has_objects(directory: Path) -> bool:
    """True if `directory` exists and contains at least one file."""
    if not directory.is_dir():
        return False
    return any(p.is_file() for p in directory.rglob("*"))


def uses_lfs(repo_path: Path) -> bool:
    """Detects whether a repository uses Git LFS.

    A repository qualifies if its `.gitattributes` declares an LFS filter or if
    its local object cache is non-empty.
    """
    attributes = repo_path / ".gitattributes"
    if attributes.is_file():
        try:
            if "filter=lfs" in attributes.read_text(errors="replace"):
                return True
        except OSError as e:
            logger.debug(f"Could not read {attributes}: {e}")
    return has_objects(objects_dir(repo_path))


def copy_objects(source: Path, dest: Path) -> LfsStats:
    """Copies an object tree, keeping files that already exist at the target.

    Args:
        source (Path): Directory in content-hash layout.
        dest (Path): Target directory (created if needed).

    Returns:
        LfsStats: Files found in `source` and their total size.
    """
    stats = LfsStats()
    for src in source.rglob("*"):
        if not src.is_file():
            continue
        target = dest / src.relative_to(source)
        stats.count += 1
        stats.size += src.stat().st_size
        if target.exists():
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, target)
    return stats


def fetch_objects(repo: GitRepo, fetch_all: bool) -> None:
    """Populates the local LFS cache, never failing the caller.

    A full-history fetch that fails is retried once as a current-checkout
    fetch; if that fails too the cache is used as-is.
    """
    if fetch_all:
        logger.info("  Fetching all LFS objects (this may take a while)...")
    else:
        logger.info("  Fetching LFS objects for current checkout...")
    try:
        repo.lfs_fetch(all_refs=fetch_all)
        return
    except GitError as e:
        if not fetch_all:
            logger.warning(f"  git lfs fetch failed: {e}")
            return
        logger.warning(f"  git lfs fetch --all failed, trying without --all: {e}")
    try:
        repo.lfs_fetch(all_refs=False)
    except GitError as e:
        logger.warning(f"  git lfs fetch failed: {e}")


def export_objects(repo: GitRepo, bundle_dir: Path, fetch_all: bool) -> LfsStats:
    """Fetches and copies a repository's LFS objects next to its bundle.

    Args:
        repo (GitRepo): The source repository.
        bundle_dir (Path): The per-repository output directory.
        fetch_all (bool): Fetch objects for all history.

    Returns:
        LfsStats: What was exported; zero when no objects were found.
    """
    fetch_objects(repo, fetch_all)

    cache = objects_dir(repo.path)
    if not has_objects(cache):
        logger.info("  No LFS objects found to export")
        return LfsStats()

    stats = copy_objects(cache, bundle_dir / LFS_DIR_NAME)
    logger.info(f"  Exported {stats.describe()}")
    return stats


def import_objects(payload_dir: Path, repo_path: Path) -> LfsStats:
    """Copies an archive's LFS payload into a working copy's object cache."""
    if not has_objects(payload_dir):
        return LfsStats()
    stats = copy_objects(payload_dir, objects_dir(repo_path))
    logger.info(f"  Imported {stats.describe()}")
    return stats
