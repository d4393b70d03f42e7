"""Destination remote URLs and configuration."""

import logging
from urllib.parse import quote

from .config import RemoteConfig
from .constants import APP_NAME
from .git_wrapper import GitBackend

logger = logging.getLogger(APP_NAME)


def build_remote_url(remote: RemoteConfig, repo_name: str) -> str:
    """Builds the destination URL for a repository.

    Args:
        remote (RemoteConfig): Destination service settings.
        repo_name (str): The repository name.

    Returns:
        str: 'git@<host>:<group>/<repo>.git' in ssh mode, otherwise an https
             URL with the username and token embedded.
    """
    if remote.auth_method == "ssh":
        return f"git@{remote.host}:{remote.group}/{repo_name}.git"
    user = quote(remote.username, safe="")
    token = quote(remote.token, safe="")
    return f"https://{user}:{token}@{remote.host}/{remote.group}/{repo_name}.git"


def redact(text: str, remote: RemoteConfig) -> str:
    """Masks the access token in any text bound for logs or the console."""
    for secret in {remote.token, quote(remote.token, safe="")}:
        if secret:
            text = text.replace(secret, "****")
    return text


def configure_remote(repo: GitBackend, remote: RemoteConfig, repo_name: str) -> bool:
    """Creates or updates the destination remote.

    Running it repeatedly converges on the same URL.

    Args:
        repo (GitBackend): The destination working copy.
        remote (RemoteConfig): Destination service settings.
        repo_name (str): The repository name.

    Returns:
        bool: True if the remote was created, False if it was updated.
    """
    url = build_remote_url(remote, repo_name)
    existing = repo.remote_url(remote.name)
    if existing is None:
        logger.info(f"  Adding '{remote.name}' remote...")
        repo.add_remote(remote.name, url)
        return True
    if existing != url:
        logger.info(f"  Updating '{remote.name}' remote URL...")
        repo.set_remote_url(remote.name, url)
    else:
        logger.info(f"  '{remote.name}' remote already up to date")
    return False
