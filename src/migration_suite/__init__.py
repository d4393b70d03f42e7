"""Migration Suite: moves git history between disconnected environments.

This package provides the command-line interface and the operational logic
for collecting incremental git bundles on a source network, packaging them
into a single transferable archive, and replaying them into working copies
on a destination network before pushing to the destination service.
"""

from . import (
    applier,
    archive,
    bundle,
    cli,
    collector,
    config,
    constants,
    errors,
    git_wrapper,
    initializer,
    lfs,
    manifest,
    remote,
    repos,
    selector,
    summary,
)

__all__ = [
    "applier",
    "archive",
    "bundle",
    "cli",
    "collector",
    "config",
    "constants",
    "errors",
    "git_wrapper",
    "initializer",
    "lfs",
    "manifest",
    "remote",
    "repos",
    "selector",
    "summary",
]
