"""Packaging bundle directories into transferable archives, and back."""

import base64
import datetime
import logging
import tarfile
import tempfile
import zipfile
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from pathlib import Path

from .bundle import format_timestamp, parse_timestamp
from .constants import (
    APP_NAME,
    ARCHIVE_PREFIX,
    ENCODED_SUFFIX,
    TAR_SUFFIX,
    ZIP_SUFFIX,
)
from .errors import ArchiveError

logger = logging.getLogger(APP_NAME)

_CHUNK = 3 * 1024 * 1024  # multiple of 3 so base64 chunks concatenate cleanly


class ArchiveFormat(str, Enum):
    TXT = "txt"
    TAR = "tar"
    ZIP = "zip"

    @property
    def suffix(self) -> str:
        return {
            ArchiveFormat.TXT: ENCODED_SUFFIX,
            ArchiveFormat.TAR: TAR_SUFFIX,
            ArchiveFormat.ZIP: ZIP_SUFFIX,
        }[self]


# Preference when two archives share a timestamp.
_SUFFIX_RANK = {ENCODED_SUFFIX: 2, TAR_SUFFIX: 1, ZIP_SUFFIX: 0}


def archive_name(fmt: ArchiveFormat, now: datetime.datetime) -> str:
    """Builds 'migration-suite_<timestamp><suffix>'."""
    return f"{ARCHIVE_PREFIX}{format_timestamp(now)}{fmt.suffix}"


def archive_suffix(path: Path) -> str | None:
    """Returns the recognised archive suffix of a filename, if any."""
    name = path.name
    if not name.startswith(ARCHIVE_PREFIX):
        return None
    for suffix in (ENCODED_SUFFIX, TAR_SUFFIX, ZIP_SUFFIX):
        if name.endswith(suffix):
            return suffix
    return None


def list_repo_dirs(root: Path) -> list[Path]:
    """Top-level repository directories of a bundle tree, sorted by name."""
    return sorted(p for p in root.iterdir() if p.is_dir())


def _encode_file(source: Path, dest: Path) -> None:
    with open(source, "rb") as src, open(dest, "wb") as out:
        while chunk := src.read(_CHUNK):
            out.write(base64.encodebytes(chunk))


def _decode_file(source: Path, dest: Path) -> None:
    with open(source, "rb") as src, open(dest, "wb") as out:
        base64.decode(src, out)


def create_archive(
    bundle_dir: Path,
    output_dir: Path,
    fmt: ArchiveFormat = ArchiveFormat.TXT,
    now: datetime.datetime | None = None,
) -> Path:
    """Packs every repository directory under `bundle_dir` into one archive.

    Args:
        bundle_dir (Path): Directory holding one subdirectory per repository.
        output_dir (Path): Where the archive is written.
        fmt (ArchiveFormat): Container format. TXT is a base64-encoded tar.gz.
        now (datetime | None): Timestamp for the filename. Defaults to now.

    Returns:
        Path: The created archive.

    Raises:
        ArchiveError: If there is nothing to package or writing fails.
    """
    if not bundle_dir.is_dir():
        raise ArchiveError(f"Bundle directory {bundle_dir} does not exist.")
    repo_dirs = list_repo_dirs(bundle_dir)
    if not repo_dirs:
        raise ArchiveError(f"Bundle directory {bundle_dir} is empty. Nothing to package.")

    now = now or datetime.datetime.now()
    output_dir.mkdir(parents=True, exist_ok=True)
    target = output_dir / archive_name(fmt, now)

    try:
        if fmt == ArchiveFormat.ZIP:
            with zipfile.ZipFile(target, "w", zipfile.ZIP_DEFLATED) as zf:
                for repo_dir in repo_dirs:
                    for path in sorted(repo_dir.rglob("*")):
                        if path.is_file():
                            zf.write(path, path.relative_to(bundle_dir).as_posix())
        else:
            tar_path = target if fmt == ArchiveFormat.TAR else target.with_suffix("")
            with tarfile.open(tar_path, "w:gz") as tf:
                for repo_dir in repo_dirs:
                    tf.add(repo_dir, arcname=repo_dir.name)

            if fmt == ArchiveFormat.TXT:
                logger.info("Encoding archive as base64 text...")
                _encode_file(tar_path, target)
                tar_path.unlink()
    except OSError as e:
        raise ArchiveError(f"Failed to write archive {target}: {e}") from e

    logger.info(f"Packaged {len(repo_dirs)} repositories into {target.name}")
    return target


def find_latest_archive(directory: Path) -> Path:
    """Selects the newest archive by the timestamp in its filename.

    Filesystem modification times are ignored. Ties prefer the encoded
    archive, then the plain tar.gz, then zip.

    Raises:
        ArchiveError: If the directory holds no archive.
    """
    candidates = []
    if directory.is_dir():
        for path in directory.iterdir():
            suffix = archive_suffix(path)
            if suffix is None or not path.is_file():
                continue
            stamp = parse_timestamp(path.name)
            if stamp is None:
                logger.warning(f"Ignoring archive without a timestamp: {path.name}")
                continue
            candidates.append((stamp, _SUFFIX_RANK[suffix], path.name, path))

    if not candidates:
        raise ArchiveError(
            f"No archive file found in {directory}. Copy a "
            f"{ARCHIVE_PREFIX}*{ENCODED_SUFFIX} file there first."
        )
    return max(candidates)[3]


@contextmanager
def extract_archive(archive: Path) -> Iterator[Path]:
    """Extracts an archive into a temporary directory.

    The directory is removed when the context exits, including on errors and
    keyboard interrupts.

    Args:
        archive (Path): A '.tar.gz.txt', '.tar.gz' or '.zip' archive.

    Yields:
        Path: The extraction root (one subdirectory per repository).

    Raises:
        ArchiveError: If the archive is unreadable or of an unknown type.
    """
    suffix = archive_suffix(archive) or "".join(archive.suffixes[-3:])
    with tempfile.TemporaryDirectory(prefix="migration-suite-") as tmp:
        root = Path(tmp) / "extracted"
        root.mkdir()
        try:
            if suffix.endswith(ENCODED_SUFFIX):
                logger.info("Decoding base64 archive...")
                decoded = Path(tmp) / "archive.tar.gz"
                _decode_file(archive, decoded)
                _extract_tar(decoded, root)
                decoded.unlink()
            elif suffix.endswith(TAR_SUFFIX):
                _extract_tar(archive, root)
            elif suffix.endswith(ZIP_SUFFIX):
                _extract_zip(archive, root)
            else:
                raise ArchiveError(f"Unsupported archive type: {archive.name}")
        except (OSError, tarfile.TarError, zipfile.BadZipFile, ValueError) as e:
            raise ArchiveError(f"Failed to extract {archive.name}: {e}") from e
        yield root


def _extract_tar(path: Path, dest: Path) -> None:
    with tarfile.open(path, "r:gz") as tf:
        tf.extractall(dest, filter="data")


def _extract_zip(path: Path, dest: Path) -> None:
    with zipfile.ZipFile(path) as zf:
        for member in zf.namelist():
            target = (dest / member).resolve()
            if not target.is_relative_to(dest.resolve()):
                raise ArchiveError(f"Unsafe path in archive: {member}")
        zf.extractall(dest)
