"""First-time setup of destination working copies from bundles."""

import logging
from pathlib import Path

from .archive import extract_archive, list_repo_dirs
from .bundle import find_bundle
from .config import Config
from .constants import APP_NAME, BUNDLE_REMOTE, GIT_DIR_NAME, LFS_DIR_NAME, SOURCE_REMOTE
from .errors import GitError
from .git_wrapper import GitRepo
from .lfs import has_objects, import_objects
from .remote import build_remote_url, configure_remote, redact
from .summary import RepoOutcome, RepoStatus, RunSummary

logger = logging.getLogger(APP_NAME)


def init_repository(
    repo_dir: Path, dest_root: Path, config: Config, include_lfs: bool = True
) -> RepoOutcome:
    """Clones one repository from its bundle and wires up its remotes.

    The clone's default remote is renamed to 'bundle'. The destination
    service is added under the configured remote name and also set as
    'origin'.

    Args:
        repo_dir (Path): '<extracted>/<repo>' containing the bundle.
        dest_root (Path): Directory that receives the new clone.
        config (Config): Run configuration (remote settings).
        include_lfs (bool): Import the archive's LFS payload.

    Returns:
        RepoOutcome: success for a new clone, skipped if a working copy already
                     exists, failed otherwise.
    """
    name = repo_dir.name
    dest = dest_root / name
    logger.info(f"--- Initializing: {name} ---")

    bundle_path = find_bundle(repo_dir, name)
    if bundle_path is None:
        logger.warning(f"No bundle file found for {name} in {repo_dir}")
        return RepoOutcome(name, RepoStatus.FAILED, "No bundle file found in archive")

    if dest.exists():
        if (dest / GIT_DIR_NAME).exists():
            logger.warning(f"Repository already exists at {dest}. Skipping.")
            return RepoOutcome(
                name,
                RepoStatus.SKIPPED,
                "Already initialized",
                hint="Use 'apply' to update existing repositories.",
            )
        logger.error(f"Directory exists but is not a git repository: {dest}")
        return RepoOutcome(
            name, RepoStatus.FAILED, f"{dest} exists but is not a git repository"
        )

    logger.info("Step 1: Cloning from bundle...")
    try:
        repo = GitRepo.clone(bundle_path, dest)
    except GitError as e:
        logger.error(f"Failed to clone {name} from bundle: {e}")
        return RepoOutcome(name, RepoStatus.FAILED, f"Clone failed: {e.stderr or e}")

    logger.info("Step 2: Configuring remotes...")
    try:
        if repo.remote_url(SOURCE_REMOTE) is not None:
            repo.rename_remote(SOURCE_REMOTE, BUNDLE_REMOTE)
        configure_remote(repo, config.remote, name)
        if config.remote.name != SOURCE_REMOTE:
            url = build_remote_url(config.remote, name)
            if repo.remote_url(SOURCE_REMOTE) is None:
                repo.add_remote(SOURCE_REMOTE, url)
            else:
                repo.set_remote_url(SOURCE_REMOTE, url)
    except GitError as e:
        error = redact(str(e), config.remote)
        logger.error(f"Remote configuration failed for {name}: {error}")
        return RepoOutcome(name, RepoStatus.FAILED, f"Remote setup failed: {error}")

    message = f"Cloned to {dest}"
    payload = repo_dir / LFS_DIR_NAME
    if include_lfs and has_objects(payload):
        logger.info("Step 3: Importing LFS objects...")
        stats = import_objects(payload, dest)
        message += f", {stats.describe()}"
    else:
        logger.info("Step 3: LFS import skipped")

    logger.info(f"Successfully initialized {name} at {dest}")
    return RepoOutcome(name, RepoStatus.SUCCESS, message)


def run_init(
    config: Config,
    archive: Path,
    include_lfs: bool = True,
    fail_fast: bool = False,
) -> RunSummary:
    """Initializes a working copy for every repository in an archive.

    Args:
        config (Config): Run configuration.
        archive (Path): The archive holding the bundles.
        include_lfs (bool): Global large-object toggle.
        fail_fast (bool): Stop at the first failed repository.

    Raises:
        ArchiveError: If the archive cannot be extracted.
    """
    dest_root = config.destination.init_dest_dir
    if not dest_root.exists():
        logger.info(f"Creating destination directory: {dest_root}")
        dest_root.mkdir(parents=True, exist_ok=True)

    summary = RunSummary("Init")
    with extract_archive(archive) as root:
        for repo_dir in list_repo_dirs(root):
            try:
                outcome = init_repository(repo_dir, dest_root, config, include_lfs)
            except Exception as e:
                logger.exception(f"Unexpected error initializing {repo_dir.name}")
                outcome = RepoOutcome(
                    repo_dir.name, RepoStatus.FAILED, f"Unexpected error: {e}"
                )
            summary.add(outcome)
            if outcome.failed and fail_fast:
                logger.error(f"Error initializing {repo_dir.name}. Stopping.")
                summary.aborted = True
                break
    return summary
