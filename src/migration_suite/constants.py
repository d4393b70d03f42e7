from pathlib import Path

"""Global constants and naming conventions for the Migration Suite.

This module defines the application identifiers and the filename and ref
naming schemes shared by the collector and the applier.
"""

# --- Identity ---
APP_NAME = "migration-suite"
"""str: The human-readable application name (also the logger name)."""

# --- Paths ---
DEFAULT_ENV_FILE = Path(".env")
"""Path: The configuration file read when no --env-file is given."""

# --- Naming ---
TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
"""str: strftime format embedded in bundle and archive filenames."""

BUNDLE_SUFFIX = ".bundle"

ARCHIVE_PREFIX = "migration-suite_"
"""str: Prefix of every archive produced by the packager."""

TAR_SUFFIX = ".tar.gz"
ENCODED_SUFFIX = ".tar.gz.txt"
ZIP_SUFFIX = ".zip"

LFS_DIR_NAME = "lfs"
"""str: Per-repository payload directory inside the archive."""

GIT_DIR_NAME = ".git"
"""str: Marker directory identifying a working copy."""

# --- Git / Logic Constants ---
IMPORT_NAMESPACE = "refs/remotes/bundle-import"
"""str: Isolation namespace receiving branches fetched from a bundle."""

SOURCE_REMOTE = "origin"
"""str: Remote whose tracking refs are preferred when selecting branch tips."""

BUNDLE_REMOTE = "bundle"
"""str: Name given to the bundle remote of a freshly initialized clone."""

DEFAULT_REMOTE_NAME = "gitlab"
"""str: Remote name used for the destination service."""

IMPORT_REFSPECS = [
    f"+refs/heads/*:{IMPORT_NAMESPACE}/*",
    f"+refs/remotes/{SOURCE_REMOTE}/*:{IMPORT_NAMESPACE}/*",
    "+refs/tags/*:refs/tags/*",
]
"""
list[str]: Refspecs used to fetch from a bundle. Branches land in the
isolation namespace, tags go straight into refs/tags.
"""

EMPTY_BUNDLE_MARKERS = [
    "refusing to create empty bundle",
    "empty bundle",
]
"""list[str]: Lowercased stderr fragments git emits when a range has no commits."""

# --- Exit Codes ---
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130
