"""Incremental ref and tag selection for bundle creation.

Given a refreshed source clone, a list of branch names and a lookback
expression, this module decides which history goes into a bundle:

* each branch resolves to a tip, preferring the remote-tracking ref over a
  local branch of the same name;
* each tip is paired with the newest commit at or before the lookback
  cutoff, producing a ``base..tip`` range, or stands alone when the whole
  branch is younger than the cutoff;
* tags are kept only when their commit is at or after the cutoff, is
  reachable from one of the selected tips and is not a range base (or behind
  one), so every selected tag actually lands in the bundle.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from .constants import APP_NAME, SOURCE_REMOTE
from .errors import GitError
from .git_wrapper import GitBackend

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class Boundary:
    """One bundle boundary expression.

    Attributes:
        tip (str): The ref name whose history is bundled.
        base (str | None): Exclusive lower bound commit, or None for full history.
    """

    tip: str
    base: str | None = None

    @property
    def expression(self) -> str:
        return f"{self.base}..{self.tip}" if self.base else self.tip

    @property
    def is_incremental(self) -> bool:
        return self.base is not None


@dataclass
class RefSelection:
    """The computed inputs to one bundle-create call.

    Attributes:
        boundaries (list[Boundary]): Boundary expressions in branch order.
        tags (list[str]): Tag names to include.
        cutoff (int): The lookback cutoff as a Unix timestamp.
        missing_branches (list[str]): Configured branches that did not resolve.
        unchanged_branches (list[str]): Branches with no commits in the window.
    """

    boundaries: list[Boundary] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    cutoff: int = 0
    missing_branches: list[str] = field(default_factory=list)
    unchanged_branches: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.boundaries

    @property
    def tips(self) -> list[str]:
        return [b.tip for b in self.boundaries]

    @property
    def revisions(self) -> list[str]:
        """Arguments for `git bundle create`, boundaries first, then tags."""
        return [b.expression for b in self.boundaries] + [
            f"refs/tags/{t}" for t in self.tags
        ]


def resolve_tip(repo: GitBackend, branch: str) -> str | None:
    """Resolves a configured branch name to the ref that should be bundled.

    Args:
        repo (GitBackend): The source repository.
        branch (str): The configured branch name.

    Returns:
        str | None: 'origin/<branch>' if it exists, else '<branch>' if it
                    exists locally, else None.
    """
    remote_ref = f"{SOURCE_REMOTE}/{branch}"
    if repo.resolve_commit(remote_ref):
        logger.info(f"  Found remote branch: {remote_ref}")
        return remote_ref
    if repo.resolve_commit(branch):
        logger.info(f"  Found local branch: {branch} (no remote tracking)")
        return branch
    logger.warning(f"  Branch '{branch}' not found, skipping")
    return None


def compute_boundary(repo: GitBackend, tip: str, cutoff: int) -> Boundary | None:
    """Pairs a tip with the newest commit at or before the cutoff.

    Args:
        repo (GitBackend): The source repository.
        tip (str): The resolved tip ref.
        cutoff (int): Lookback cutoff as a Unix timestamp.

    Returns:
        Boundary | None: An incremental range, or the bare tip when the
                         branch's entire history is younger than the cutoff.
                         None when the tip itself predates the cutoff, since
                         the range would hold no commits.
    """
    base = repo.find_commit_before(tip, cutoff)
    if base is not None and base == repo.resolve_commit(tip):
        logger.info(f"  No commits on {tip} since the cutoff, excluding it")
        return None
    return Boundary(tip=tip, base=base)


def _reachable_from_any(repo: GitBackend, commit: str, tips: list[str]) -> bool:
    for tip in tips:
        try:
            if repo.is_ancestor(commit, tip):
                return True
        except GitError as e:
            logger.debug(f"Ancestry check {commit} -> {tip} failed: {e}")
    return False


def select_tags(
    repo: GitBackend,
    tips: list[str],
    cutoff: int,
    bases: Iterable[str] = (),
) -> list[str]:
    """Selects tags dated at or after the cutoff and reachable from a tip.

    A tag whose commit is a base, or sits behind one, is left out: git omits
    refs pointing at prerequisite commits from the bundle.

    Args:
        repo (GitBackend): The source repository.
        tips (list[str]): The selected tip refs; other branches are ignored.
        cutoff (int): Lookback cutoff as a Unix timestamp.
        bases (Iterable[str]): Exclusive lower bounds of the selected ranges.

    Returns:
        list[str]: Qualifying tag names, in repository listing order.
    """
    if not tips:
        return []

    bases = list(bases)
    selected = []
    for tag in repo.list_tags():
        commit = repo.resolve_commit(f"refs/tags/{tag}")
        if not commit:
            continue
        timestamp = repo.commit_time(commit)
        if timestamp is None or timestamp < cutoff:
            continue
        if not _reachable_from_any(repo, commit, tips):
            continue
        if _reachable_from_any(repo, commit, bases):
            logger.debug(f"  Tag {tag} points at or behind a range base, skipping")
            continue
        logger.info(f"  Including tag: {tag}")
        selected.append(tag)
    return selected


def select_refs(
    repo: GitBackend,
    branches: Iterable[str],
    lookback: str,
    cutoff: int | None = None,
) -> RefSelection:
    """Computes the RefSelection for one repository.

    Args:
        repo (GitBackend): The refreshed source repository.
        branches (Iterable[str]): Configured branch names.
        lookback (str): Relative date expression (e.g. '1 month ago').
        cutoff (int | None): Precomputed cutoff timestamp. When omitted the
                             lookback is evaluated by git's date parser.

    Returns:
        RefSelection: The boundaries and tags. Empty when no branch resolves,
                      which callers treat as a soft skip.
    """
    if cutoff is None:
        cutoff = repo.approxidate(lookback)

    selection = RefSelection(cutoff=cutoff)
    for branch in branches:
        tip = resolve_tip(repo, branch)
        if tip is None:
            selection.missing_branches.append(branch)
            continue
        if tip in selection.tips:
            continue
        boundary = compute_boundary(repo, tip, cutoff)
        if boundary is None:
            selection.unchanged_branches.append(branch)
            continue
        selection.boundaries.append(boundary)

    if selection.is_empty:
        return selection

    logger.info(f"Checking tags (since {lookback})...")
    bases = [b.base for b in selection.boundaries if b.base]
    selection.tags = select_tags(repo, selection.tips, cutoff, bases)
    return selection
