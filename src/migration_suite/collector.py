"""Source-side bundle collection."""

import datetime
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from .bundle import create_bundle
from .config import Config
from .constants import APP_NAME
from .errors import EmptyBundleError, GitError, RepositoryNotFoundError
from .git_wrapper import GitRepo
from .lfs import export_objects, uses_lfs
from .repos import locate, resolve_search_dirs
from .selector import select_refs
from .summary import RepoOutcome, RepoStatus, RunSummary

logger = logging.getLogger(APP_NAME)


@dataclass
class CollectOptions:
    """Per-run overrides from the command line.

    Attributes:
        branches (list[str]): Branches to bundle.
        include_lfs (bool): Export large objects.
        lfs_fetch_all (bool): Fetch large objects for all history.
        fail_fast (bool): Stop at the first failed repository.
    """

    branches: list[str]
    include_lfs: bool = True
    lfs_fetch_all: bool = True
    fail_fast: bool = False

    @classmethod
    def from_config(cls, config: Config) -> "CollectOptions":
        return cls(
            branches=list(config.source.default_branches),
            include_lfs=config.lfs.include,
            lfs_fetch_all=config.lfs.fetch_all,
        )


def _discard(bundle_dir: Path) -> None:
    if bundle_dir.exists():
        shutil.rmtree(bundle_dir, ignore_errors=True)


def collect_repository(
    name: str,
    search_dirs: list[Path],
    output_dir: Path,
    lookback: str,
    options: CollectOptions,
    now: datetime.datetime | None = None,
) -> RepoOutcome:
    """Refreshes one source repository and writes its bundle.

    Args:
        name (str): Repository name.
        search_dirs (list[Path]): Source search directories.
        output_dir (Path): Root output directory; the bundle goes in
                           '<output_dir>/<name>/'.
        lookback (str): Relative date expression.
        options (CollectOptions): Branches and LFS settings.
        now (datetime | None): Timestamp for the bundle filename.

    Returns:
        RepoOutcome: success, skipped (no branches / empty range) or failed.
    """
    logger.info(f"--- Processing: {name} ---")
    bundle_dir = output_dir / name

    try:
        record = locate(name, search_dirs, options.branches)
        repo = GitRepo(record.path)
    except (RepositoryNotFoundError, ValueError) as e:
        logger.error(str(e))
        return RepoOutcome(name, RepoStatus.FAILED, str(e))
    logger.info(f"Found at: {repo.path}")

    # Previous output for this repository is replaced, never merged.
    if bundle_dir.exists():
        logger.info(f"Removing old bundles in {bundle_dir}...")
        _discard(bundle_dir)

    logger.info("Fetching latest changes...")
    try:
        repo.fetch_all()
    except GitError as e:
        logger.error(f"git fetch failed for {name}: {e}")
        return RepoOutcome(name, RepoStatus.FAILED, f"Fetch failed: {e.stderr or e}")

    selection = select_refs(repo, list(record.branches), lookback)
    warnings = [f"Branch '{b}' not found" for b in selection.missing_branches]
    if selection.is_empty:
        logger.warning(f"No branches with new commits for {name}. Skipping.")
        return RepoOutcome(
            name, RepoStatus.SKIPPED, "No branches with commits in window", warnings
        )

    try:
        bundle_path = create_bundle(repo, name, selection, bundle_dir, now=now)
    except EmptyBundleError:
        logger.info(f"No commits found in lookback period for {name}. Skipping.")
        _discard(bundle_dir)
        return RepoOutcome(name, RepoStatus.SKIPPED, "No commits in range", warnings)
    except GitError as e:
        logger.error(f"Bundle creation failed for {name}: {e}")
        _discard(bundle_dir)
        return RepoOutcome(
            name, RepoStatus.FAILED, f"Bundle creation failed: {e.stderr or e}", warnings
        )
    logger.info(f"Successfully created bundle: {bundle_path}")

    message = (
        f"{bundle_path.name}: {len(selection.boundaries)} ref(s), "
        f"{len(selection.tags)} tag(s)"
    )
    if options.include_lfs:
        if uses_lfs(repo.path):
            logger.info("Exporting LFS objects...")
            stats = export_objects(repo, bundle_dir, options.lfs_fetch_all)
            if stats.count:
                message += f", {stats.describe()}"
        else:
            logger.info(f"No LFS configuration detected for {name}")
    else:
        logger.info("LFS export skipped")

    return RepoOutcome(name, RepoStatus.SUCCESS, message, warnings)


def run_collect(
    config: Config,
    names: list[str],
    options: CollectOptions,
    now: datetime.datetime | None = None,
) -> RunSummary:
    """Collects bundles for every named repository, sequentially.

    Failures are recorded and the run continues, unless `fail_fast` is set.

    Args:
        config (Config): Run configuration.
        names (list[str]): Repository names in processing order.
        options (CollectOptions): Per-run overrides.
        now (datetime | None): Shared timestamp for every bundle in the run.

    Returns:
        RunSummary: One outcome per processed repository.

    Raises:
        ConfigError: If no source search directory exists.
    """
    search_dirs = resolve_search_dirs(config.source.search_dirs)
    output_dir = config.source.bundle_output_dir
    lookback = config.source.lookback
    now = now or datetime.datetime.now()

    summary = RunSummary("Collect")
    for name in names:
        try:
            outcome = collect_repository(
                name, search_dirs, output_dir, lookback, options, now=now
            )
        except Exception as e:
            logger.exception(f"Unexpected error processing {name}")
            outcome = RepoOutcome(name, RepoStatus.FAILED, f"Unexpected error: {e}")
        summary.add(outcome)
        if outcome.failed and options.fail_fast:
            logger.error(f"Error processing {name}. Stopping.")
            summary.aborted = True
            break
    return summary
