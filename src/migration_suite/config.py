import logging
import os
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import dotenv_values

from .constants import APP_NAME, DEFAULT_REMOTE_NAME
from .errors import ConfigError

logger = logging.getLogger(APP_NAME)

AUTH_METHODS = ("https", "ssh")


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_bool(value: str) -> bool:
    """Converts 'true'/'false' style strings to booleans."""
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean '{value}'")


def parse_list(value: str) -> list[str]:
    """Splits a comma-separated value, dropping blanks."""
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_branches(value: str) -> list[str]:
    """Splits a branch list separated by commas and/or whitespace."""
    return [b for b in re.split(r"[,\s]+", value.strip()) if b]


def parse_auth_method(value: str) -> str:
    method = value.strip().lower()
    if method not in AUTH_METHODS:
        raise ValueError(
            f"Unknown auth method '{value}' (expected one of {', '.join(AUTH_METHODS)})"
        )
    return method


@dataclass
class SourceConfig:
    """Collector (source environment) settings.

    Attributes:
        search_dirs (list[Path]): Ordered directories searched for repositories.
        repos_list_file (Path | None): File listing repository names.
        bundle_output_dir (Path | None): Where per-repository bundles are written.
        default_branches (list[str]): Branches bundled when none are given.
        lookback (str | None): Relative date expression (e.g. '1 month ago').
        archive_output_dir (Path | None): Where archives are written.
    """

    search_dirs: list[Path] = field(default_factory=list)
    repos_list_file: Path | None = None
    bundle_output_dir: Path | None = None
    default_branches: list[str] = field(default_factory=list)
    lookback: str | None = None
    archive_output_dir: Path | None = None


@dataclass
class DestinationConfig:
    """Applier (destination environment) settings.

    Attributes:
        search_dirs (list[Path]): Ordered directories searched for working copies.
        archive_input_dir (Path | None): Directory scanned for archives.
        init_dest_dir (Path | None): Where first-time clones are created.
    """

    search_dirs: list[Path] = field(default_factory=list)
    archive_input_dir: Path | None = None
    init_dest_dir: Path | None = None


@dataclass
class RemoteConfig:
    """Destination service settings.

    Attributes:
        host (str): Service hostname.
        group (str): Group/namespace that holds the repositories.
        username (str): Account used for token authentication.
        token (str): Personal access token.
        auth_method (str): 'https' (token in URL) or 'ssh' (agent keys).
        name (str): Name of the git remote pointing at the service.
    """

    host: str = ""
    group: str = ""
    username: str = ""
    token: str = ""
    auth_method: str = "https"
    name: str = DEFAULT_REMOTE_NAME


@dataclass
class LfsConfig:
    """Large-object handling.

    Attributes:
        include (bool): Whether large objects are exported and imported at all.
        fetch_all (bool): Fetch objects for all history, not just the checkout.
    """

    include: bool = True
    fetch_all: bool = True


@dataclass
class LoggingConfig:
    """Log output settings.

    Attributes:
        file (Path | None): Optional rotating log file.
        max_size (int): Max bytes for the log file before rotation.
    """

    file: Path | None = None
    max_size: int = 5 * 1024 * 1024


# KEY -> (section, attribute, parser). A parser of None stores the raw string;
# "path" and "paths" resolve relative to the env file directory.
_KEYS: dict[str, tuple[str, str, Callable[[str], Any] | str | None]] = {
    "SOURCE_SEARCH_DIRS": ("source", "search_dirs", "paths"),
    "REPOS_LIST_FILE": ("source", "repos_list_file", "path"),
    "BUNDLE_OUTPUT_DIR": ("source", "bundle_output_dir", "path"),
    "DEFAULT_BRANCHES": ("source", "default_branches", parse_branches),
    "BUNDLE_LOOKBACK": ("source", "lookback", None),
    "ARCHIVE_OUTPUT_DIR": ("source", "archive_output_dir", "path"),
    "DEST_SEARCH_DIRS": ("destination", "search_dirs", "paths"),
    "ARCHIVE_INPUT_DIR": ("destination", "archive_input_dir", "path"),
    "INIT_DEST_DIR": ("destination", "init_dest_dir", "path"),
    "GITLAB_HOST": ("remote", "host", None),
    "GITLAB_GROUP": ("remote", "group", None),
    "GITLAB_USERNAME": ("remote", "username", None),
    "GITLAB_TOKEN": ("remote", "token", None),
    "GITLAB_AUTH_METHOD": ("remote", "auth_method", parse_auth_method),
    "GITLAB_REMOTE_NAME": ("remote", "name", None),
    "INCLUDE_LFS": ("lfs", "include", parse_bool),
    "LFS_FETCH_ALL": ("lfs", "fetch_all", parse_bool),
    "DOCKER_IMAGES_FILE": ("", "images_file", "path"),
    "LOG_FILE": ("logs", "file", "path"),
    "LOG_MAX_SIZE": ("logs", "max_size", parse_size),
}

KEY_DESCRIPTIONS: dict[str, str] = {
    "SOURCE_SEARCH_DIRS": "Comma-separated directories searched for source repos.",
    "REPOS_LIST_FILE": "File listing repository names, one per line.",
    "BUNDLE_OUTPUT_DIR": "Directory receiving per-repository bundle folders.",
    "DEFAULT_BRANCHES": "Branches to bundle (comma or space separated).",
    "BUNDLE_LOOKBACK": "How far back to include history (e.g. '1 month ago').",
    "ARCHIVE_OUTPUT_DIR": "Where archives are written (default: bundle dir parent).",
    "DEST_SEARCH_DIRS": "Comma-separated directories searched for destination repos.",
    "ARCHIVE_INPUT_DIR": "Directory scanned for archives (default: env file dir).",
    "INIT_DEST_DIR": "Directory where 'init' clones new repositories.",
    "GITLAB_HOST": "Destination service hostname.",
    "GITLAB_GROUP": "Group/namespace holding the destination repositories.",
    "GITLAB_USERNAME": "Username for token authentication.",
    "GITLAB_TOKEN": "Personal access token with write access.",
    "GITLAB_AUTH_METHOD": "'https' (token in URL) or 'ssh' (key based).",
    "GITLAB_REMOTE_NAME": "Name of the destination git remote (default 'gitlab').",
    "INCLUDE_LFS": "Export/import large objects (default true).",
    "LFS_FETCH_ALL": "Fetch large objects for all history (default true).",
    "DOCKER_IMAGES_FILE": "Image list file (default docker-images.conf).",
    "LOG_FILE": "Optional rotating log file.",
    "LOG_MAX_SIZE": "Log size before rotation (e.g. '5mb').",
}


@dataclass
class Config:
    """Global configuration aggregator.

    Built once at process start and passed explicitly to every phase.

    Attributes:
        source (SourceConfig): Collector settings.
        destination (DestinationConfig): Applier settings.
        remote (RemoteConfig): Destination service settings.
        lfs (LfsConfig): Large-object settings.
        logs (LoggingConfig): Log output settings.
        images_file (Path | None): Image list file.
        base_dir (Path): Directory relative paths resolve against.
    """

    source: SourceConfig = field(default_factory=SourceConfig)
    destination: DestinationConfig = field(default_factory=DestinationConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    lfs: LfsConfig = field(default_factory=LfsConfig)
    logs: LoggingConfig = field(default_factory=LoggingConfig)
    images_file: Path | None = None
    base_dir: Path = field(default_factory=Path.cwd)
    _present: set[str] = field(default_factory=set, repr=False)

    @classmethod
    def load(
        cls, env_file: Path, environ: Mapping[str, str] | None = None
    ) -> "Config":
        """Loads configuration from an env file, overlaid by the environment.

        Args:
            env_file (Path): The flat KEY=VALUE file to read. A missing file is
                             allowed as long as the environment supplies the
                             required keys.
            environ (Mapping[str, str] | None): Variables that override the
                             file. Defaults to `os.environ`.

        Returns:
            Config: The populated configuration object.
        """
        env_file = Path(env_file)
        instance = cls(base_dir=env_file.resolve().parent)

        values: dict[str, str] = {}
        if env_file.exists():
            file_values = dotenv_values(env_file)
            values.update({k: v for k, v in file_values.items() if v is not None})
        else:
            logger.warning(f"Config file not found: {env_file}")

        environ = os.environ if environ is None else environ
        for key in _KEYS:
            if key in environ:
                values[key] = environ[key]

        instance._apply(values)
        instance._fill_defaults()
        return instance

    def _apply(self, values: Mapping[str, str]) -> None:
        """Routes raw string values into the typed sections."""
        for key, raw in values.items():
            if key not in _KEYS:
                continue
            raw = raw.strip()
            if not raw:
                continue

            section_name, attr, parser = _KEYS[key]
            try:
                if parser == "path":
                    value: Any = self.resolve_path(raw)
                elif parser == "paths":
                    value = [self.resolve_path(p) for p in parse_list(raw)]
                elif callable(parser):
                    value = parser(raw)
                else:
                    value = raw
            except ValueError as e:
                logger.warning(f"Config error in {key}: {e}. Falling back to default.")
                continue

            target = getattr(self, section_name) if section_name else self
            setattr(target, attr, value)
            self._present.add(key)

    def _fill_defaults(self) -> None:
        """Derives defaults that depend on other settings."""
        if self.source.archive_output_dir is None and self.source.bundle_output_dir:
            self.source.archive_output_dir = self.source.bundle_output_dir.parent
        if self.destination.archive_input_dir is None:
            self.destination.archive_input_dir = self.base_dir
        if self.images_file is None:
            self.images_file = self.base_dir / "docker-images.conf"

    def resolve_path(self, raw: str) -> Path:
        """Resolves a configured path relative to the env file directory."""
        path = Path(raw).expanduser()
        return path if path.is_absolute() else self.base_dir / path

    def require(self, *keys: str) -> None:
        """Ensures every named key was supplied.

        Raises:
            ConfigError: Listing every missing key.
        """
        missing = [k for k in keys if k not in self._present]
        if missing:
            raise ConfigError(
                "The following required variables are not set: " + ", ".join(missing),
                missing=missing,
            )
