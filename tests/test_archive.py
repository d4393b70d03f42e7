"""Tests for bundle naming, archive packaging and latest-archive discovery."""

import datetime
import io
import os
import tarfile
import zipfile
from pathlib import Path

import pytest

from migration_suite.archive import (
    ArchiveFormat,
    archive_name,
    create_archive,
    extract_archive,
    find_latest_archive,
    list_repo_dirs,
)
from migration_suite.bundle import bundle_filename, find_bundle, parse_timestamp
from migration_suite.errors import ArchiveError

NOW = datetime.datetime(2024, 6, 1, 14, 5, 9)


@pytest.fixture
def bundle_dir(tmp_path: Path) -> Path:
    """Two repositories, one with an LFS payload."""
    root = tmp_path / "bundles"
    (root / "svc-a" / "lfs" / "ab" / "cd").mkdir(parents=True)
    (root / "svc-a" / "svc-a_2024-06-01_14-00-00.bundle").write_bytes(b"A" * 5000)
    (root / "svc-a" / "lfs" / "ab" / "cd" / "abcd").write_bytes(os.urandom(2048))
    (root / "svc-b").mkdir()
    (root / "svc-b" / "svc-b_2024-06-01_14-00-00.bundle").write_bytes(b"B" * 10)
    return root


def test_names_embed_sortable_timestamp() -> None:
    """Verifies the bundle and archive naming scheme."""
    assert bundle_filename("svc-a", NOW) == "svc-a_2024-06-01_14-05-09.bundle"
    assert (
        archive_name(ArchiveFormat.TXT, NOW)
        == "migration-suite_2024-06-01_14-05-09.tar.gz.txt"
    )
    assert archive_name(ArchiveFormat.ZIP, NOW).endswith(".zip")
    assert parse_timestamp("svc-a_2024-06-01_14-05-09.bundle") == NOW
    assert parse_timestamp("svc-a.bundle") is None
    assert parse_timestamp("svc-a_2024-13-45_99-99-99.bundle") is None


@pytest.mark.parametrize("fmt", list(ArchiveFormat))
def test_archive_round_trip(bundle_dir: Path, tmp_path: Path, fmt: ArchiveFormat) -> None:
    """Verifies that every format extracts back to the same tree."""
    archive = create_archive(bundle_dir, tmp_path / "dist", fmt, now=NOW)

    assert archive.name == archive_name(fmt, NOW)
    assert [p.name for p in archive.parent.iterdir()] == [archive.name]

    with extract_archive(archive) as root:
        assert [p.name for p in list_repo_dirs(root)] == ["svc-a", "svc-b"]
        for src in bundle_dir.rglob("*"):
            if src.is_file():
                copy = root / src.relative_to(bundle_dir)
                assert copy.read_bytes() == src.read_bytes()
        extracted = root

    assert not extracted.exists()


def test_encoded_archive_is_plain_text(bundle_dir: Path, tmp_path: Path) -> None:
    """Verifies that the default format is base64 text."""
    archive = create_archive(bundle_dir, tmp_path, now=NOW)

    text = archive.read_text(encoding="ascii")
    assert all(len(line) <= 76 for line in text.splitlines())


def test_create_archive_empty_directory(tmp_path: Path) -> None:
    """Verifies that packaging nothing is an error."""
    (tmp_path / "bundles").mkdir()

    with pytest.raises(ArchiveError, match="Nothing to package"):
        create_archive(tmp_path / "bundles", tmp_path)
    with pytest.raises(ArchiveError, match="does not exist"):
        create_archive(tmp_path / "missing", tmp_path)


def test_extraction_cleans_up_on_error(bundle_dir: Path, tmp_path: Path) -> None:
    """Verifies that the temporary directory is removed when processing fails."""
    archive = create_archive(bundle_dir, tmp_path, ArchiveFormat.TAR, now=NOW)

    with pytest.raises(RuntimeError):
        with extract_archive(archive) as root:
            seen = root
            raise RuntimeError("boom")
    assert not seen.exists()


def test_extract_corrupt_archive(tmp_path: Path) -> None:
    """Verifies that unreadable archives raise ArchiveError."""
    archive = tmp_path / "migration-suite_2024-06-01_14-05-09.tar.gz"
    archive.write_bytes(b"not a tarball")

    with pytest.raises(ArchiveError):
        with extract_archive(archive):
            pass


def test_extract_rejects_path_traversal(tmp_path: Path) -> None:
    """Verifies that archive members cannot escape the extraction directory."""
    tar_path = tmp_path / "migration-suite_2024-06-01_14-05-09.tar.gz"
    with tarfile.open(tar_path, "w:gz") as tf:
        data = b"owned"
        info = tarfile.TarInfo("../../escape.txt")
        info.size = len(data)
        tf.addfile(info, io.BytesIO(data))

    with pytest.raises(ArchiveError):
        with extract_archive(tar_path):
            pass

    zip_path = tmp_path / "migration-suite_2024-06-01_14-05-09.zip"
    with zipfile.ZipFile(zip_path, "w") as zf:
        zf.writestr("../escape.txt", "owned")

    with pytest.raises(ArchiveError, match="Unsafe path"):
        with extract_archive(zip_path):
            pass


def test_find_latest_archive_uses_filename_timestamp(tmp_path: Path) -> None:
    """Verifies that the newest name wins regardless of modification time."""
    older = tmp_path / "migration-suite_2024-05-01_00-00-00.tar.gz.txt"
    newer = tmp_path / "migration-suite_2024-06-01_00-00-00.tar.gz"
    older.write_text("x")
    newer.write_text("x")
    (tmp_path / "notes.txt").write_text("x")
    future = datetime.datetime(2030, 1, 1).timestamp()
    os.utime(older, (future, future))

    assert find_latest_archive(tmp_path) == newer


def test_find_latest_archive_tie_prefers_encoded(tmp_path: Path) -> None:
    """Verifies the format preference for archives from the same run."""
    for suffix in (".zip", ".tar.gz", ".tar.gz.txt"):
        (tmp_path / f"migration-suite_2024-06-01_00-00-00{suffix}").write_text("x")

    assert find_latest_archive(tmp_path).name.endswith(".tar.gz.txt")


def test_find_latest_archive_none(tmp_path: Path) -> None:
    """Verifies that an empty input directory is fatal."""
    with pytest.raises(ArchiveError, match="No archive file found"):
        find_latest_archive(tmp_path)


def test_find_bundle_ignores_mtime(tmp_path: Path) -> None:
    """Verifies bundle choice by embedded timestamp, not modification time."""
    newer = tmp_path / "svc-a_2024-06-02_00-00-00.bundle"
    older = tmp_path / "svc-a_2024-06-01_00-00-00.bundle"
    newer.write_text("x")
    older.write_text("x")
    (tmp_path / "svc-ab_2024-07-01_00-00-00.bundle").write_text("x")
    future = datetime.datetime(2030, 1, 1).timestamp()
    os.utime(older, (future, future))

    assert find_bundle(tmp_path, "svc-a") == newer
    assert find_bundle(tmp_path, "svc-c") is None
