"""Shared fixtures: an in-memory stand-in for the git command line."""

import datetime
from pathlib import Path

import pytest

from migration_suite.config import Config, RemoteConfig
from migration_suite.constants import IMPORT_NAMESPACE
from migration_suite.errors import EmptyBundleError, GitError


def ts(*args: int) -> int:
    """UTC Unix timestamp for a calendar date."""
    return int(datetime.datetime(*args, tzinfo=datetime.UTC).timestamp())


class FakeGit:
    """A commit graph with refs, bundles and a push log.

    Bundles written by `create_bundle` are recorded in `store` so a second
    FakeGit sharing the store can fetch from them.
    """

    def __init__(self, path: Path, store: dict | None = None, cutoff: int = 0):
        self.path = path
        self.commits: dict[str, tuple[int, str | None]] = {}
        self.refs: dict[str, str] = {}
        self.remotes: dict[str, str] = {}
        self.store = store if store is not None else {}
        self.cutoff = cutoff
        self.pushed: list[tuple[str, str]] = []
        self.reject: dict[str, str] = {}
        self.fail_verify: str | None = None
        self.fail_fetch: str | None = None
        self.fail_refresh: str | None = None
        self.lfs_pushes: list[str] = []
        self.calls: list[str] = []

    # -- graph setup --

    def commit(self, sha: str, when: int, parent: str | None = None) -> str:
        self.commits[sha] = (when, parent)
        return sha

    def set_ref(self, name: str, sha: str) -> None:
        self.refs[name] = sha

    def _full_name(self, rev: str) -> str | None:
        for candidate in (rev, f"refs/heads/{rev}", f"refs/remotes/{rev}", f"refs/tags/{rev}"):
            if candidate in self.refs:
                return candidate
        return None

    def _ancestry(self, sha: str | None) -> list[str]:
        chain = []
        while sha is not None:
            chain.append(sha)
            sha = self.commits[sha][1]
        return chain

    # -- GitBackend --

    def resolve_commit(self, rev: str) -> str | None:
        name = self._full_name(rev)
        if name is not None:
            return self.refs[name]
        return rev if rev in self.commits else None

    def find_commit_before(self, tip: str, cutoff: int) -> str | None:
        for sha in self._ancestry(self.resolve_commit(tip)):
            if self.commits[sha][0] <= cutoff:
                return sha
        return None

    def commit_time(self, rev: str) -> int | None:
        sha = self.resolve_commit(rev)
        return self.commits[sha][0] if sha else None

    def list_tags(self) -> list[str]:
        prefix = "refs/tags/"
        return sorted(r[len(prefix) :] for r in self.refs if r.startswith(prefix))

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        target = self.resolve_commit(ancestor)
        return target in self._ancestry(self.resolve_commit(descendant))

    def approxidate(self, expression: str) -> int:
        self.calls.append(f"approxidate {expression}")
        return self.cutoff

    def create_bundle(self, bundle_path: Path, revisions: list[str]) -> None:
        included: set[str] = set()
        excluded: set[str] = set()
        heads: dict[str, str] = {}
        for rev in revisions:
            base, _, tip = rev.rpartition("..")
            if base:
                excluded.update(self._ancestry(self.resolve_commit(base)))
            name = self._full_name(tip)
            sha = self.refs[name]
            heads[name] = sha
            included.update(self._ancestry(sha))
        commits = included - excluded
        if not commits:
            raise EmptyBundleError(
                ["bundle", "create"], 128, "fatal: Refusing to create empty bundle."
            )
        bundle_path.write_text("\n".join(sorted(commits)))
        self.store[Path(bundle_path).name] = {
            "heads": heads,
            "commits": commits,
            "graph": {c: self.commits[c] for c in self._closure(heads.values())},
        }

    def _closure(self, shas) -> set[str]:
        seen: set[str] = set()
        for sha in shas:
            seen.update(self._ancestry(sha))
        return seen

    def verify_bundle(self, bundle_path: Path) -> None:
        self.calls.append("verify")
        if self.fail_verify:
            raise GitError(
                ["bundle", "verify", str(bundle_path)], 1, self.fail_verify
            )

    def list_bundle_refs(self, bundle_path: Path) -> list[str]:
        return list(self.store[Path(bundle_path).name]["heads"])

    def fetch(self, source: str, refspecs: list[str]) -> None:
        self.calls.append("fetch")
        if self.fail_fetch:
            raise GitError(["fetch", source], 128, self.fail_fetch)
        bundle = self.store[Path(source).name]
        self.commits.update(bundle["graph"])
        for name, sha in bundle["heads"].items():
            for prefix in ("refs/heads/", "refs/remotes/origin/"):
                if name.startswith(prefix):
                    self.refs[f"{IMPORT_NAMESPACE}/{name[len(prefix):]}"] = sha
            if name.startswith("refs/tags/"):
                self.refs[name] = sha

    def push(self, remote: str, refspec: str) -> None:
        dst = refspec.split(":", 1)[1]
        if dst in self.reject:
            raise GitError(["push", remote, refspec], 1, self.reject[dst])
        self.pushed.append((remote, refspec))

    def list_refs(self, pattern: str) -> list[str]:
        return sorted(r for r in self.refs if r.startswith(pattern))

    def delete_ref(self, ref: str) -> None:
        del self.refs[ref]

    def remote_url(self, name: str) -> str | None:
        return self.remotes.get(name)

    def add_remote(self, name: str, url: str) -> None:
        if name in self.remotes:
            raise GitError(["remote", "add", name], 3, f"error: remote {name} already exists.")
        self.remotes[name] = url

    def set_remote_url(self, name: str, url: str) -> None:
        self.remotes[name] = url

    def lfs_push(self, remote: str) -> None:
        self.lfs_pushes.append(remote)

    # -- source-side extras (GitRepo only) --

    def fetch_all(self) -> None:
        self.calls.append("fetch_all")
        if self.fail_refresh:
            raise GitError(["fetch", "--all"], 1, self.fail_refresh)

    def lfs_fetch(self, all_refs: bool) -> None:
        self.calls.append(f"lfs_fetch all={all_refs}")

    def rename_remote(self, old: str, new: str) -> None:
        self.remotes[new] = self.remotes.pop(old)


@pytest.fixture
def remote_config() -> RemoteConfig:
    return RemoteConfig(
        host="gitlab.example.com",
        group="platform",
        username="deploy",
        token="s3cr3t-token",
    )


@pytest.fixture
def config(tmp_path: Path, remote_config: RemoteConfig) -> Config:
    conf = Config(base_dir=tmp_path)
    conf.remote = remote_config
    return conf
