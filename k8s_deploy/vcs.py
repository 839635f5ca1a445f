"""Version control helpers.

Reads the most recent commit hash of the git repository enclosing a
directory, used as the default deployment version.
"""

from __future__ import annotations

import logging
from pathlib import Path

from git import InvalidGitRepositoryError, NoSuchPathError, Repo
from git.exc import GitError

from k8s_deploy.errors import VersionControlError

logger = logging.getLogger(__name__)


def head_commit_hash(path: Path) -> str | None:
    """Return the HEAD commit hash of the repository containing ``path``.

    Parent directories are searched, so ``path`` may be any directory
    inside the working tree.

    Args:
        path: Directory inside a git working tree.

    Returns:
        Full hex SHA of HEAD, or None if ``path`` is not under version
        control or the repository has no commits yet.

    Raises:
        VersionControlError: If the repository exists but cannot be read.
    """
    try:
        repo = Repo(path, search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError):
        logger.debug("%s is not inside a git repository", path)
        return None

    try:
        with repo:
            if not repo.head.is_valid():
                logger.debug("Git repository at %s has no commits", repo.working_dir)
                return None
            sha = repo.head.commit.hexsha
    except (GitError, ValueError) as e:
        raise VersionControlError(
            f"Error retrieving git repository head for {path}: {e}"
        ) from e

    logger.debug("Git HEAD for %s is %s", path, sha)
    return sha


__all__ = ["head_commit_hash"]
