"""Repository list parsing and working-copy discovery."""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from .constants import APP_NAME, GIT_DIR_NAME
from .errors import ConfigError, RepositoryNotFoundError

logger = logging.getLogger(APP_NAME)

_NAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")


@dataclass(frozen=True)
class RepositoryRecord:
    """One unit of migration.

    Attributes:
        name (str): Repository name; also a path and URL segment.
        path (Path): The local working copy.
        branches (tuple[str, ...]): Branch names to track.
    """

    name: str
    path: Path
    branches: tuple[str, ...] = field(default_factory=tuple)


def is_valid_name(name: str) -> bool:
    """Checks that a name is usable as a single filesystem and URL path segment."""
    return bool(_NAME_RE.match(name)) and name not in (".", "..")


def parse_repo_list(lines: Iterable[str]) -> list[str]:
    """Extracts repository names from list-file lines.

    Blank lines and lines starting with '#' are ignored, Windows line endings
    are tolerated, and duplicate or invalid names are dropped with a warning.

    Args:
        lines (Iterable[str]): Raw lines from the list file.

    Returns:
        list[str]: Unique repository names in file order.
    """
    names: list[str] = []
    seen: set[str] = set()
    for raw in lines:
        name = raw.replace("\r", "").strip()
        if not name or name.startswith("#"):
            continue
        if not is_valid_name(name):
            logger.warning(f"Ignoring invalid repository name: {name!r}")
            continue
        if name in seen:
            logger.warning(f"Ignoring duplicate repository entry: {name}")
            continue
        seen.add(name)
        names.append(name)
    return names


def read_repo_list(path: Path) -> list[str]:
    """Reads a repository list file.

    Raises:
        ConfigError: If the file does not exist.
    """
    if not path.is_file():
        raise ConfigError(f"Repository list file does not exist: {path}")
    with open(path, encoding="utf-8") as f:
        return parse_repo_list(f)


def resolve_search_dirs(dirs: Iterable[Path]) -> list[Path]:
    """Filters configured search directories down to those that exist.

    Args:
        dirs (Iterable[Path]): Candidate directories in priority order.

    Returns:
        list[Path]: The existing directories, order preserved.

    Raises:
        ConfigError: If none of the directories exist.
    """
    valid = []
    for d in dirs:
        if d.is_dir():
            valid.append(d)
        else:
            logger.warning(f"Search directory does not exist, skipping: {d}")
    if not valid:
        raise ConfigError("No valid search directories found.")
    return valid


def find_repository(name: str, search_dirs: Iterable[Path]) -> Path:
    """Locates a working copy by name in an ordered list of directories.

    The first `<dir>/<name>` containing a `.git` entry wins.

    Raises:
        RepositoryNotFoundError: If no search directory contains the repository.
    """
    search_dirs = list(search_dirs)
    for d in search_dirs:
        candidate = d / name
        if (candidate / GIT_DIR_NAME).exists():
            return candidate
    searched = ", ".join(str(d) for d in search_dirs)
    raise RepositoryNotFoundError(
        f"Repository '{name}' not found in any search directory ({searched})."
    )


def locate(
    name: str, search_dirs: Iterable[Path], branches: Iterable[str] = ()
) -> RepositoryRecord:
    """Builds a RepositoryRecord for `name` by searching `search_dirs`."""
    return RepositoryRecord(
        name=name,
        path=find_repository(name, search_dirs),
        branches=tuple(branches),
    )
