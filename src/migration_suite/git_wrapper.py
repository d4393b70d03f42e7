import logging
import os
import re
import subprocess
from pathlib import Path
from typing import Protocol

from .constants import APP_NAME, EMPTY_BUNDLE_MARKERS, GIT_DIR_NAME
from .errors import EmptyBundleError, GitError

logger = logging.getLogger(APP_NAME)

_MAX_AGE_RE = re.compile(r"--max-age=(\d+)")


class GitBackend(Protocol):
    """The version-control capabilities the selector and applier rely on.

    `GitRepo` is the production implementation. Tests substitute an in-memory
    fake so the ref-selection and reconciliation logic can run without a git
    binary.
    """

    path: Path

    def resolve_commit(self, rev: str) -> str | None: ...

    def find_commit_before(self, tip: str, cutoff: int) -> str | None: ...

    def commit_time(self, rev: str) -> int | None: ...

    def list_tags(self) -> list[str]: ...

    def is_ancestor(self, ancestor: str, descendant: str) -> bool: ...

    def approxidate(self, expression: str) -> int: ...

    def create_bundle(self, bundle_path: Path, revisions: list[str]) -> None: ...

    def verify_bundle(self, bundle_path: Path) -> None: ...

    def list_bundle_refs(self, bundle_path: Path) -> list[str]: ...

    def fetch(self, source: str, refspecs: list[str]) -> None: ...

    def push(self, remote: str, refspec: str) -> None: ...

    def list_refs(self, pattern: str) -> list[str]: ...

    def delete_ref(self, ref: str) -> None: ...

    def remote_url(self, name: str) -> str | None: ...

    def add_remote(self, name: str, url: str) -> None: ...

    def set_remote_url(self, name: str, url: str) -> None: ...

    def lfs_push(self, remote: str) -> None: ...


class GitRepo:
    """A wrapper around the Git command-line interface for a specific repository.

    This class provides methods to execute the Git operations the migration
    workflow needs using `subprocess`, abstracting away command construction
    and output handling. Every failure surfaces as a `GitError` carrying the
    exit code and stderr so callers can tell soft conditions (such as an
    empty bundle range) from real failures.

    Attributes:
        path (Path): The file system path to the repository root.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.

        Raises:
            ValueError: If the specified path does not contain a .git directory.
        """
        self.path = path
        if not (self.path / GIT_DIR_NAME).exists():
            raise ValueError(f"Not a git repository: {self.path}")

    @classmethod
    def clone(cls, source: Path, dest: Path) -> "GitRepo":
        """Clones a repository (or a bundle file) into a new directory.

        Args:
            source (Path): The clone source, typically a bundle file.
            dest (Path): The directory to create.

        Returns:
            GitRepo: A wrapper around the new working copy.

        Raises:
            GitError: If the clone fails.
        """
        args = ["clone", str(source), str(dest)]
        res = subprocess.run(["git", *args], capture_output=True, text=True)
        if res.returncode != 0:
            raise GitError(args, res.returncode, res.stderr)
        return cls(dest)

    def _run(
        self, args: list[str], capture: bool = True, env: dict | None = None
    ) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            capture (bool, optional):   Whether to return stdout.
                                        Defaults to True.
            env (Optional[dict], optional): Environment variables to pass to the
                                            subprocess. Defaults to None.

        Returns:
            str:    The stripped stdout of the command if capture is True,
                    otherwise an empty string.

        Raises:
            GitError: If the git command returns a non-zero exit code.
        """
        res = subprocess.run(
            ["git", *args],
            cwd=self.path,
            capture_output=True,
            text=True,
            env=env,
        )
        if res.returncode != 0:
            raise GitError(args, res.returncode, res.stderr)
        return res.stdout.strip() if capture else ""

    @staticmethod
    def _batch_env() -> dict[str, str]:
        """Environment that makes network commands fail instead of prompting."""
        env = os.environ.copy()
        env["GIT_SSH_COMMAND"] = "ssh -o BatchMode=yes"
        env["GIT_TERMINAL_PROMPT"] = "0"
        return env

    def resolve_commit(self, rev: str) -> str | None:
        """Resolves a revision to the SHA-1 of the commit it points at.

        Annotated tags are peeled to their target commit.

        Args:
            rev (str): The revision to resolve (e.g., 'origin/main', 'v1.0').

        Returns:
            Optional[str]:  The full commit hash, or None if the revision does
                            not resolve to a commit.
        """
        try:
            return self._run(["rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}"])
        except GitError as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    def find_commit_before(self, tip: str, cutoff: int) -> str | None:
        """Finds the newest commit reachable from `tip` dated at or before `cutoff`.

        Args:
            tip (str): The branch tip to walk from.
            cutoff (int): Unix timestamp of the lookback horizon.

        Returns:
            Optional[str]: The commit hash, or None if every commit is younger.
        """
        output = self._run(["rev-list", "-1", f"--before=@{cutoff} +0000", tip])
        return output or None

    def commit_time(self, rev: str) -> int | None:
        """Returns the committer timestamp of a revision.

        Args:
            rev (str): The revision to inspect.

        Returns:
            Optional[int]: The Unix timestamp, or None if it cannot be read.
        """
        try:
            output = self._run(["log", "-1", "--format=%ct", rev])
            return int(output) if output else None
        except (GitError, ValueError) as e:
            logger.debug(f"Failed to read commit time for '{rev}': {e}")
            return None

    def list_tags(self) -> list[str]:
        """Lists every tag name in the repository."""
        output = self._run(["tag", "--list"])
        return output.splitlines() if output else []

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Checks whether `ancestor` is reachable from `descendant`.

        Raises:
            GitError: For any failure other than the "not an ancestor" answer.
        """
        try:
            self._run(["merge-base", "--is-ancestor", ancestor, descendant])
            return True
        except GitError as e:
            if e.returncode == 1:
                return False
            raise

    def approxidate(self, expression: str) -> int:
        """Evaluates a relative date expression with git's own date parser.

        Args:
            expression (str): A natural-language date such as '1 month ago'.

        Returns:
            int: The corresponding Unix timestamp.

        Raises:
            ValueError: If git does not produce a timestamp.
        """
        output = self._run(["rev-parse", f"--since={expression}"])
        match = _MAX_AGE_RE.search(output)
        if not match:
            raise ValueError(f"Invalid lookback expression '{expression}'")
        return int(match.group(1))

    def fetch_all(self) -> None:
        """Refreshes every remote, including tags, overwriting moved tags."""
        self._run(["fetch", "--all", "--tags", "--force"], env=self._batch_env())

    def create_bundle(self, bundle_path: Path, revisions: list[str]) -> None:
        """Writes a bundle containing the given revision expressions.

        Args:
            bundle_path (Path): The bundle file to create.
            revisions (list[str]): Ref names, ranges ('base..tip') and tags.

        Raises:
            EmptyBundleError: If the selected ranges contain no commits.
            GitError: For any other failure.
        """
        args = ["bundle", "create", str(bundle_path), *revisions]
        try:
            self._run(args)
        except GitError as e:
            lowered = e.stderr.lower()
            if any(marker in lowered for marker in EMPTY_BUNDLE_MARKERS):
                raise EmptyBundleError(e.args_list, e.returncode, e.stderr) from e
            raise

    def verify_bundle(self, bundle_path: Path) -> None:
        """Checks bundle consistency and that its prerequisites exist locally."""
        self._run(["bundle", "verify", str(bundle_path)])

    def list_bundle_refs(self, bundle_path: Path) -> list[str]:
        """Lists the ref names recorded in a bundle header.

        Args:
            bundle_path (Path): The bundle file.

        Returns:
            list[str]: Fully qualified ref names (e.g., 'refs/tags/v1.0').
        """
        output = self._run(["bundle", "list-heads", str(bundle_path)])
        refs = []
        for line in output.splitlines():
            parts = line.split()
            if len(parts) == 2:
                refs.append(parts[1])
        return refs

    def fetch(self, source: str, refspecs: list[str]) -> None:
        """Fetches refs from a remote, URL or bundle path."""
        self._run(["fetch", source, *refspecs])

    def push(self, remote: str, refspec: str) -> None:
        """Pushes a single refspec, never prompting for credentials.

        Raises:
            GitError: If the remote rejects the update or is unreachable.
        """
        self._run(["push", remote, refspec], env=self._batch_env())

    def list_refs(self, pattern: str) -> list[str]:
        """Lists references matching a specific pattern.

        Args:
            pattern (str): The prefix or glob to match (e.g., 'refs/remotes/x/').

        Returns:
            list[str]: A list of matching reference names.
        """
        try:
            output = self._run(["for-each-ref", "--format=%(refname)", pattern])
            return output.splitlines() if output else []
        except GitError as e:
            logger.warning(f"Git error listing refs for {pattern}: {e}")
            return []

    def delete_ref(self, ref: str) -> None:
        """Deletes a reference."""
        self._run(["update-ref", "-d", ref])

    def remote_url(self, name: str) -> str | None:
        """Returns the URL of a remote, or None if the remote does not exist."""
        try:
            return self._run(["remote", "get-url", name])
        except GitError:
            return None

    def add_remote(self, name: str, url: str) -> None:
        self._run(["remote", "add", name, url])

    def set_remote_url(self, name: str, url: str) -> None:
        self._run(["remote", "set-url", name, url])

    def rename_remote(self, old: str, new: str) -> None:
        self._run(["remote", "rename", old, new])

    def lfs_fetch(self, all_refs: bool) -> None:
        """Downloads large objects into the local LFS cache.

        Args:
            all_refs (bool): Fetch objects for all history instead of only the
                             current checkout.
        """
        cmd = ["lfs", "fetch"]
        if all_refs:
            cmd.append("--all")
        self._run(cmd, env=self._batch_env())

    def lfs_push(self, remote: str) -> None:
        """Uploads every local large object to the remote's LFS endpoint."""
        self._run(["lfs", "push", "--all", remote], env=self._batch_env())
