"""Bundle verification and ref reconciliation on the destination side.

A bundle is replayed into an existing working copy in fixed steps:

    Located -> Verified -> Fetched -> LargeObjectsImported
            -> RemoteConfigured -> Pushed -> CleanedUp

Branches from the bundle are fetched into an isolation namespace
(``refs/remotes/bundle-import/*``) and pushed from there, so local branches
and the checked-out working tree are never modified. Each ref is pushed on
its own so one rejection cannot block the rest, and the isolation namespace
is emptied on every exit path.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .archive import extract_archive, list_repo_dirs
from .bundle import find_bundle
from .config import Config
from .constants import (
    APP_NAME,
    IMPORT_NAMESPACE,
    IMPORT_REFSPECS,
    LFS_DIR_NAME,
)
from .errors import GitError, RepositoryNotFoundError
from .git_wrapper import GitBackend, GitRepo
from .lfs import has_objects, import_objects
from .remote import configure_remote, redact
from .repos import find_repository, resolve_search_dirs
from .summary import RepoOutcome, RepoStatus, RunSummary

logger = logging.getLogger(APP_NAME)

VERIFY_HINT = (
    "The destination is likely missing prerequisite history. Re-create the "
    "bundle with a longer BUNDLE_LOOKBACK (or a full bundle) and apply again."
)


class ApplyState(str, Enum):
    LOCATED = "Located"
    VERIFIED = "Verified"
    FETCHED = "Fetched"
    LARGE_OBJECTS_IMPORTED = "LargeObjectsImported"
    REMOTE_CONFIGURED = "RemoteConfigured"
    PUSHED = "Pushed"
    CLEANED_UP = "CleanedUp"
    VERIFICATION_FAILED = "VerificationFailed"
    FETCH_FAILED = "FetchFailed"
    REMOTE_FAILED = "RemoteFailed"


FAILURE_STATES = {
    ApplyState.VERIFICATION_FAILED,
    ApplyState.FETCH_FAILED,
    ApplyState.REMOTE_FAILED,
}


@dataclass
class PushReport:
    """Per-ref push results.

    Attributes:
        pushed_tags (list[str]): Tags accepted by the remote.
        rejected_tags (dict[str, str]): Tag -> reason (usually already present).
        pushed_branches (list[str]): Branches accepted by the remote.
        rejected_branches (dict[str, str]): Branch -> reason.
    """

    pushed_tags: list[str] = field(default_factory=list)
    rejected_tags: dict[str, str] = field(default_factory=dict)
    pushed_branches: list[str] = field(default_factory=list)
    rejected_branches: dict[str, str] = field(default_factory=dict)


@dataclass
class ApplyResult:
    """The trace of one bundle application.

    Attributes:
        repo_name (str): The repository name.
        state (ApplyState): The last state reached (or the failure state).
        history (list[ApplyState]): Every state entered, in order.
        push (PushReport): Per-ref push results.
        warnings (list[str]): Non-fatal problems.
        error (str): Failure description for terminal failure states.
        lfs_objects (int): Number of large objects imported.
    """

    repo_name: str
    state: ApplyState = ApplyState.LOCATED
    history: list[ApplyState] = field(default_factory=lambda: [ApplyState.LOCATED])
    push: PushReport = field(default_factory=PushReport)
    warnings: list[str] = field(default_factory=list)
    error: str = ""
    lfs_objects: int = 0

    def advance(self, state: ApplyState) -> None:
        self.history.append(state)
        if self.state not in FAILURE_STATES:
            self.state = state

    def fail(self, state: ApplyState, error: str) -> None:
        self.history.append(state)
        self.state = state
        self.error = error

    def warn(self, message: str) -> None:
        logger.warning(f"  {message}")
        self.warnings.append(message)

    @property
    def failed(self) -> bool:
        return self.state in FAILURE_STATES

    def to_outcome(self) -> RepoOutcome:
        """Classifies the result for the run summary."""
        push = self.push
        if self.failed:
            hint = VERIFY_HINT if self.state == ApplyState.VERIFICATION_FAILED else ""
            return RepoOutcome(
                self.repo_name,
                RepoStatus.FAILED,
                f"{self.state.value}: {self.error}",
                self.warnings,
                hint,
            )
        if push.rejected_branches and not push.pushed_branches:
            return RepoOutcome(
                self.repo_name,
                RepoStatus.FAILED,
                "All branch pushes were rejected",
                self.warnings,
                "Check credentials and branch protection rules on the remote.",
            )
        if push.rejected_branches:
            return RepoOutcome(
                self.repo_name,
                RepoStatus.PARTIAL,
                f"Pushed {len(push.pushed_branches)} branch(es), "
                f"{len(push.rejected_branches)} rejected",
                self.warnings,
                "Rejected branches may be protected or diverged on the remote.",
            )
        return RepoOutcome(
            self.repo_name,
            RepoStatus.SUCCESS,
            f"Pushed {len(push.pushed_branches)} branch(es), "
            f"{len(push.pushed_tags)} tag(s)",
            self.warnings,
        )


def _is_existing_tag_rejection(stderr: str) -> bool:
    lowered = stderr.lower()
    return "already exists" in lowered or "would clobber" in lowered


def imported_branches(repo: GitBackend) -> list[str]:
    """Branch names currently held in the isolation namespace."""
    prefix = f"{IMPORT_NAMESPACE}/"
    names = []
    for ref in repo.list_refs(prefix):
        name = ref[len(prefix) :] if ref.startswith(prefix) else ref
        if name and name != "HEAD":
            names.append(name)
    return names


def bundle_tags(repo: GitBackend, bundle_path: Path) -> list[str]:
    """Tag names recorded in a bundle header."""
    prefix = "refs/tags/"
    return [
        ref[len(prefix) :]
        for ref in repo.list_bundle_refs(bundle_path)
        if ref.startswith(prefix) and not ref.endswith("^{}")
    ]


def push_tags(
    repo: GitBackend,
    remote_name: str,
    tags: list[str],
    result: ApplyResult,
    config: Config,
) -> None:
    """Pushes tags one by one; rejections are warnings, never failures."""
    for tag in tags:
        try:
            repo.push(remote_name, f"refs/tags/{tag}:refs/tags/{tag}")
            result.push.pushed_tags.append(tag)
        except GitError as e:
            reason = redact(e.stderr or str(e), config.remote)
            result.push.rejected_tags[tag] = reason
            if _is_existing_tag_rejection(e.stderr):
                result.warn(f"Tag '{tag}' already exists on remote")
            else:
                result.warn(f"Tag '{tag}' failed to push: {reason}")


def push_branches(
    repo: GitBackend,
    remote_name: str,
    branches: list[str],
    result: ApplyResult,
    config: Config,
) -> None:
    """Pushes each isolated branch onto the remote's branch namespace."""
    for branch in branches:
        refspec = f"{IMPORT_NAMESPACE}/{branch}:refs/heads/{branch}"
        try:
            repo.push(remote_name, refspec)
            result.push.pushed_branches.append(branch)
            logger.info(f"  Pushed branch: {branch}")
        except GitError as e:
            reason = redact(e.stderr or str(e), config.remote)
            result.push.rejected_branches[branch] = reason
            result.warn(f"Branch '{branch}' was rejected: {reason}")


def cleanup_isolated_refs(repo: GitBackend, result: ApplyResult | None = None) -> int:
    """Deletes every ref in the isolation namespace.

    Returns:
        int: The number of refs deleted.
    """
    deleted = 0
    for ref in repo.list_refs(f"{IMPORT_NAMESPACE}/"):
        try:
            repo.delete_ref(ref)
            deleted += 1
        except GitError as e:
            message = f"Could not delete temporary ref {ref}: {e}"
            if result is not None:
                result.warn(message)
            else:
                logger.warning(message)
    return deleted


def apply_bundle(
    repo: GitBackend,
    repo_name: str,
    bundle_path: Path,
    config: Config,
    lfs_payload: Path | None = None,
    include_lfs: bool = True,
) -> ApplyResult:
    """Replays one bundle into a destination working copy and pushes it.

    Args:
        repo (GitBackend): The located destination working copy.
        repo_name (str): The repository name.
        bundle_path (Path): The bundle to apply.
        config (Config): Run configuration (remote settings).
        lfs_payload (Path | None): The bundle's LFS directory, if any.
        include_lfs (bool): Global large-object toggle.

    Returns:
        ApplyResult: The state trace and per-ref push report.
    """
    result = ApplyResult(repo_name)
    remote_name = config.remote.name

    try:
        logger.info("Step 1: Verifying bundle...")
        try:
            repo.verify_bundle(bundle_path)
        except GitError as e:
            logger.error(f"Bundle verification failed for {repo_name}: {e}")
            result.fail(ApplyState.VERIFICATION_FAILED, e.stderr or str(e))
            return result
        result.advance(ApplyState.VERIFIED)

        logger.info("Step 2: Fetching from bundle into isolation namespace...")
        try:
            repo.fetch(str(bundle_path), IMPORT_REFSPECS)
        except GitError as e:
            logger.error(f"Failed to fetch from bundle for {repo_name}: {e}")
            result.fail(ApplyState.FETCH_FAILED, e.stderr or str(e))
            return result
        result.advance(ApplyState.FETCHED)

        branches = imported_branches(repo)
        tags = bundle_tags(repo, bundle_path)
        logger.info(f"  Imported branches: {', '.join(branches) or '(none)'}")

        lfs_ready = include_lfs and lfs_payload is not None and has_objects(lfs_payload)
        if lfs_ready:
            logger.info("Step 3: Importing LFS objects...")
            result.lfs_objects = import_objects(lfs_payload, repo.path).count
            result.advance(ApplyState.LARGE_OBJECTS_IMPORTED)
        else:
            logger.info("Step 3: LFS import skipped")

        logger.info("Step 4: Configuring destination remote...")
        try:
            configure_remote(repo, config.remote, repo_name)
        except GitError as e:
            error = redact(str(e), config.remote)
            logger.error(f"Remote configuration failed for {repo_name}: {error}")
            result.fail(ApplyState.REMOTE_FAILED, error)
            return result
        result.advance(ApplyState.REMOTE_CONFIGURED)

        logger.info("Step 5: Pushing tags, then branches...")
        push_tags(repo, remote_name, tags, result, config)
        push_branches(repo, remote_name, branches, result, config)

        if lfs_ready:
            logger.info("  Pushing LFS objects...")
            try:
                repo.lfs_push(remote_name)
            except GitError as e:
                result.warn(
                    "Some LFS objects may have failed to push: "
                    + redact(str(e), config.remote)
                )
        result.advance(ApplyState.PUSHED)
        return result
    finally:
        logger.info("Step 6: Cleaning up temporary refs...")
        cleanup_isolated_refs(repo, result)
        result.advance(ApplyState.CLEANED_UP)


def apply_repository(
    repo_dir: Path,
    search_dirs: list[Path],
    config: Config,
    include_lfs: bool = True,
) -> RepoOutcome:
    """Applies one extracted archive directory to its destination repository.

    Args:
        repo_dir (Path): '<extracted>/<repo>' containing the bundle.
        search_dirs (list[Path]): Destination search directories.
        config (Config): Run configuration.
        include_lfs (bool): Global large-object toggle.

    Returns:
        RepoOutcome: The classified result.
    """
    name = repo_dir.name
    logger.info(f"--- Processing: {name} ---")

    bundle_path = find_bundle(repo_dir, name)
    if bundle_path is None:
        logger.warning(f"No bundle file found for {name} in {repo_dir}")
        return RepoOutcome(name, RepoStatus.FAILED, "No bundle file found in archive")
    logger.info(f"Bundle: {bundle_path.name}")

    try:
        repo = GitRepo(find_repository(name, search_dirs))
    except (RepositoryNotFoundError, ValueError) as e:
        logger.error(str(e))
        return RepoOutcome(
            name,
            RepoStatus.FAILED,
            str(e),
            hint="Clone the repository first (or run 'init'), then re-run apply.",
        )
    logger.info(f"Found at: {repo.path}")

    lfs_payload = repo_dir / LFS_DIR_NAME
    result = apply_bundle(
        repo,
        name,
        bundle_path,
        config,
        lfs_payload=lfs_payload if lfs_payload.is_dir() else None,
        include_lfs=include_lfs,
    )
    return result.to_outcome()


def run_apply(
    config: Config,
    archive: Path,
    include_lfs: bool = True,
    fail_fast: bool = False,
) -> RunSummary:
    """Extracts an archive and applies every repository bundle in it.

    Args:
        config (Config): Run configuration.
        archive (Path): The archive to apply.
        include_lfs (bool): Global large-object toggle.
        fail_fast (bool): Stop at the first failed repository.

    Returns:
        RunSummary: One outcome per processed repository.

    Raises:
        ConfigError: If no destination search directory exists.
        ArchiveError: If the archive cannot be extracted.
    """
    search_dirs = resolve_search_dirs(config.destination.search_dirs)
    summary = RunSummary("Apply")

    logger.info(f"Extracting {archive.name}...")
    with extract_archive(archive) as root:
        repo_dirs = list_repo_dirs(root)
        if not repo_dirs:
            logger.warning(f"Archive {archive.name} contains no repositories")
        for repo_dir in repo_dirs:
            try:
                outcome = apply_repository(repo_dir, search_dirs, config, include_lfs)
            except Exception as e:
                logger.exception(f"Unexpected error processing {repo_dir.name}")
                outcome = RepoOutcome(
                    repo_dir.name, RepoStatus.FAILED, f"Unexpected error: {e}"
                )
            summary.add(outcome)
            if outcome.failed and fail_fast:
                logger.error(f"Error processing {repo_dir.name}. Stopping.")
                summary.aborted = True
                break
    return summary
