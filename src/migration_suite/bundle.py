"""Bundle artifact naming, creation and discovery."""

import datetime
import logging
import re
from pathlib import Path

from .constants import APP_NAME, BUNDLE_SUFFIX, TIMESTAMP_FORMAT
from .git_wrapper import GitBackend
from .selector import RefSelection

logger = logging.getLogger(APP_NAME)

_TIMESTAMP_RE = re.compile(r"(\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})")


def format_timestamp(now: datetime.datetime) -> str:
    return now.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(name: str) -> datetime.datetime | None:
    """Extracts the embedded run timestamp from a bundle or archive filename.

    Args:
        name (str): A filename such as 'svc-a_2024-05-01_10-20-30.bundle'.

    Returns:
        datetime | None: The parsed timestamp, or None if absent or invalid.
    """
    match = _TIMESTAMP_RE.search(name)
    if not match:
        return None
    try:
        return datetime.datetime.strptime(match.group(1), TIMESTAMP_FORMAT)
    except ValueError:
        return None


def bundle_filename(repo_name: str, now: datetime.datetime) -> str:
    """Builds '<repo>_<YYYY-MM-DD_HH-MM-SS>.bundle'."""
    return f"{repo_name}_{format_timestamp(now)}{BUNDLE_SUFFIX}"


def create_bundle(
    repo: GitBackend,
    repo_name: str,
    selection: RefSelection,
    output_dir: Path,
    now: datetime.datetime | None = None,
) -> Path:
    """Materializes a bundle file for a non-empty selection.

    Args:
        repo (GitBackend): The source repository.
        repo_name (str): The repository name used in the filename.
        selection (RefSelection): Boundaries and tags to bundle.
        output_dir (Path): The per-repository output directory.
        now (datetime | None): Timestamp for the filename. Defaults to now.

    Returns:
        Path: The written bundle.

    Raises:
        ValueError: If the selection is empty.
        EmptyBundleError: If git finds no commits in the selected ranges.
        GitError: For any other bundle failure.
    """
    if selection.is_empty:
        raise ValueError(f"Empty ref selection for {repo_name}")

    now = now or datetime.datetime.now()
    output_dir.mkdir(parents=True, exist_ok=True)
    bundle_path = output_dir / bundle_filename(repo_name, now)

    logger.info(f"Creating bundle: {bundle_path.name}")
    logger.info(f"  Refs: {' '.join(b.expression for b in selection.boundaries)}")
    if selection.tags:
        logger.info(f"  Tags: {' '.join(selection.tags)}")

    repo.create_bundle(bundle_path, selection.revisions)
    return bundle_path


def find_bundle(directory: Path, repo_name: str) -> Path | None:
    """Finds the bundle for a repository inside an extracted archive directory.

    When several bundles match, the one with the latest filename timestamp
    wins; ties (or unparseable names) fall back to lexicographic order.

    Args:
        directory (Path): The repository's directory in the archive.
        repo_name (str): The repository name (bundle filename prefix).

    Returns:
        Path | None: The chosen bundle, or None if there is none.
    """
    candidates = [
        p for p in directory.glob(f"{repo_name}_*{BUNDLE_SUFFIX}") if p.is_file()
    ]
    if not candidates:
        return None

    def sort_key(p: Path) -> tuple[datetime.datetime, str]:
        return (parse_timestamp(p.name) or datetime.datetime.min, p.name)

    return max(candidates, key=sort_key)
