"""Tests for the Command Line Interface (CLI) module."""

import logging
from collections.abc import Iterator
from logging.handlers import RotatingFileHandler
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from rich.console import Console

from migration_suite import cli
from migration_suite.config import Config, LoggingConfig
from migration_suite.constants import APP_NAME
from migration_suite.summary import RepoOutcome, RepoStatus, RunSummary

SOURCE_ENV = """\
SOURCE_SEARCH_DIRS=repos
REPOS_LIST_FILE=repos.txt
BUNDLE_OUTPUT_DIR=out/bundles
DEFAULT_BRANCHES=main,dev
BUNDLE_LOOKBACK=2 weeks ago
"""

DEST_ENV = """\
DEST_SEARCH_DIRS=work
GITLAB_HOST=gitlab.example.com
GITLAB_GROUP=platform
GITLAB_AUTH_METHOD=ssh
"""


@pytest.fixture(autouse=True)
def reset_logger() -> Iterator[None]:
    """Detaches handlers added by main() so tests stay independent."""
    yield
    logger = logging.getLogger(APP_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


def _run_main(mocker: MagicMock, *argv: str) -> int:
    mocker.patch("sys.argv", ["migration-suite", *argv])
    with pytest.raises(SystemExit) as exc:
        cli.main()
    return exc.value.code


def test_main_without_command_prints_help(
    mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    """Verifies that the grouped help is shown when no command is given.

    Args:
        mocker (MagicMock): Pytest fixture for mocking.
        capsys (pytest.CaptureFixture): Pytest fixture for capturing stdout.
    """
    mocker.patch("sys.argv", ["migration-suite"])

    cli.main()

    out = capsys.readouterr().out
    assert "Source Environment:" in out
    assert "Destination Environment:" in out
    assert "collect" in out


def test_config_command_lists_keys(
    mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    """Verifies the configuration reference table."""
    mocker.patch("sys.argv", ["migration-suite", "config"])

    cli.main()

    out = capsys.readouterr().out
    assert "GITLAB_TOKEN" in out
    assert "BUNDLE_LOOKBACK" in out


def test_collect_reports_missing_keys(
    tmp_path: Path, mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    """Verifies that missing configuration is a run-level error (exit 1)."""
    env_file = tmp_path / ".env"
    env_file.write_text("BUNDLE_OUTPUT_DIR=out\n")
    run = mocker.patch("migration_suite.cli.run_collect")

    code = _run_main(mocker, "--env-file", str(env_file), "collect")

    assert code == 1
    out = capsys.readouterr().out
    assert "SOURCE_SEARCH_DIRS" in out
    assert "BUNDLE_LOOKBACK" in out
    run.assert_not_called()


def test_collect_applies_overrides(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies that CLI flags override the configured branches and LFS mode.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        mocker (MagicMock): Pytest fixture for mocking.
    """
    env_file = tmp_path / ".env"
    env_file.write_text(SOURCE_ENV)
    run = mocker.patch(
        "migration_suite.cli.run_collect", return_value=RunSummary("Collect")
    )

    code = _run_main(
        mocker,
        "--env-file",
        str(env_file),
        "collect",
        "-r",
        "svc-a",
        "-b",
        "release, hotfix",
        "--lfs-current",
        "--fail-fast",
    )

    assert code == 0
    config, names, options = run.call_args.args
    assert isinstance(config, Config)
    assert names == ["svc-a"]
    assert options.branches == ["release", "hotfix"]
    assert options.lfs_fetch_all is False
    assert options.include_lfs is True
    assert options.fail_fast is True


def test_collect_rejects_unsafe_repo_name(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies that -r cannot smuggle a path into the output directory."""
    env_file = tmp_path / ".env"
    env_file.write_text(SOURCE_ENV)
    run = mocker.patch("migration_suite.cli.run_collect")

    assert _run_main(mocker, "--env-file", str(env_file), "collect", "-r", "../x") == 1
    run.assert_not_called()


def test_collect_exit_code_follows_summary(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies that a failed repository turns into exit code 1."""
    env_file = tmp_path / ".env"
    env_file.write_text(SOURCE_ENV)
    (tmp_path / "repos.txt").write_text("svc-a\nsvc-b\n")
    summary = RunSummary("Collect")
    summary.add(RepoOutcome("svc-a", RepoStatus.SUCCESS))
    summary.add(RepoOutcome("svc-b", RepoStatus.FAILED, "boom"))
    mocker.patch("migration_suite.cli.run_collect", return_value=summary)

    assert _run_main(mocker, "--env-file", str(env_file), "collect") == 1


def test_package_writes_archive(
    tmp_path: Path, mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    """Verifies the package command end to end."""
    env_file = tmp_path / ".env"
    env_file.write_text("BUNDLE_OUTPUT_DIR=out/bundles\n")
    repo_dir = tmp_path / "out" / "bundles" / "svc-a"
    repo_dir.mkdir(parents=True)
    (repo_dir / "svc-a_2024-06-01_00-00-00.bundle").write_text("x")

    code = _run_main(mocker, "--env-file", str(env_file), "package", "--format", "zip")

    assert code == 0
    archives = list((tmp_path / "out").glob("migration-suite_*.zip"))
    assert len(archives) == 1
    assert "Archive created" in capsys.readouterr().out


def test_apply_requires_token_only_for_https(
    tmp_path: Path, mocker: MagicMock
) -> None:
    """Verifies that ssh mode does not demand a username or token."""
    env_file = tmp_path / ".env"
    env_file.write_text(DEST_ENV)
    (tmp_path / "migration-suite_2024-06-01_00-00-00.tar.gz.txt").write_text("")
    run = mocker.patch("migration_suite.cli.run_apply", return_value=RunSummary("Apply"))

    assert _run_main(mocker, "--env-file", str(env_file), "apply", "--no-lfs") == 0

    config, archive, include_lfs, fail_fast = run.call_args.args
    assert archive.name == "migration-suite_2024-06-01_00-00-00.tar.gz.txt"
    assert include_lfs is False
    assert fail_fast is False


def test_apply_interrupted_exits_130(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies the exit code on keyboard interrupt."""
    env_file = tmp_path / ".env"
    env_file.write_text(DEST_ENV)
    archive = tmp_path / "bundle.tar.gz"
    archive.write_text("")
    mocker.patch("migration_suite.cli.run_apply", side_effect=KeyboardInterrupt)

    code = _run_main(
        mocker, "--env-file", str(env_file), "apply", "--archive", str(archive)
    )

    assert code == 130


def test_apply_without_archive_fails(
    tmp_path: Path, mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    """Verifies that an empty input directory is a run-level error."""
    env_file = tmp_path / ".env"
    env_file.write_text(DEST_ENV)

    assert _run_main(mocker, "--env-file", str(env_file), "apply") == 1
    assert "No archive file found" in capsys.readouterr().out


def test_images_lists_export_names(
    tmp_path: Path, mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    """Verifies the image list validation output."""
    env_file = tmp_path / ".env"
    env_file.write_text("")
    (tmp_path / "docker-images.conf").write_text("# images\nproj/webapp:v1\n")

    assert _run_main(mocker, "--env-file", str(env_file), "images") == 0
    assert "webapp_v1.tar.gz.txt" in capsys.readouterr().out


def test_summary_render_escapes_git_output() -> None:
    """Verifies that bracketed git output is shown literally, not as markup."""
    console = Console(record=True, width=200)
    summary = RunSummary("Apply")
    summary.add(
        RepoOutcome(
            "svc-a",
            RepoStatus.PARTIAL,
            "Pushed 1 branch(es), 1 rejected",
            ["Branch 'dev' was rejected: ! [remote rejected] dev -> dev"],
        )
    )
    summary.add(RepoOutcome("svc-b", RepoStatus.SKIPPED, "No commits in range"))

    summary.render(console)

    text = console.export_text()
    assert "[remote rejected]" in text
    assert "Succeeded: 0  Skipped: 1  Failed: 1" in text
    assert summary.exit_code == 1


def test_setup_logging_adds_rotating_file(tmp_path: Path) -> None:
    """Verifies the optional rotating log file and its size limit."""
    log_file = tmp_path / "logs" / "run.log"

    cli.setup_logging(False, LoggingConfig(file=log_file, max_size=1024))
    cli.setup_logging(True, LoggingConfig(file=log_file, max_size=1024))

    logger = logging.getLogger(APP_NAME)
    file_handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
    assert len(file_handlers) == 1
    assert file_handlers[0].maxBytes == 1024
    assert logger.level == logging.DEBUG

    logger.info("hello")
    assert "INFO: hello" in log_file.read_text()


def test_init_passes_fail_fast(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies that init accepts --fail-fast like collect and apply."""
    env_file = tmp_path / ".env"
    env_file.write_text(DEST_ENV + "INIT_DEST_DIR=init\n")
    archive = tmp_path / "bundle.tar.gz"
    archive.write_text("")
    run = mocker.patch("migration_suite.cli.run_init", return_value=RunSummary("Init"))

    code = _run_main(
        mocker,
        "--env-file",
        str(env_file),
        "init",
        "--archive",
        str(archive),
        "--fail-fast",
    )

    assert code == 0
    _, _, include_lfs, fail_fast = run.call_args.args
    assert include_lfs is True
    assert fail_fast is True
