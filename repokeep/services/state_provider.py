"""
Repository state predicates for computed sets.

Computed sets (``@dirty``, ``@outdated``, ...) are derived at resolution
time from a RepoStateProvider, never cached and never persisted.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Union
import logging

from ..domain.repository import Repo
from ..infra.git_client import GitClient

logger = logging.getLogger(__name__)


class RepoStateProvider(ABC):
    """Answers per-repository state questions."""

    @abstractmethod
    def is_dirty(self, repo: Repo) -> bool:
        """Unstaged modifications in the working tree."""

    @abstractmethod
    def is_outdated(self, repo: Repo) -> bool:
        """The checked-out branch is behind its upstream."""

    @abstractmethod
    def has_staged_cache(self, repo: Repo) -> bool:
        """Changes added to the index but not committed."""

    @abstractmethod
    def is_unreleased(self, repo: Repo) -> bool:
        """Commits exist after the most recent tag."""


# Computed set name -> predicate; None selects every repository
COMPUTED_SETS: Dict[str, Union[str, None]] = {
    'all': None,
    'dirty': 'is_dirty',
    'outdated': 'is_outdated',
    'cached': 'has_staged_cache',
    'unreleased': 'is_unreleased',
}


class GitStateProvider(RepoStateProvider):
    """
    State predicates backed by git.

    Example:
        provider = GitStateProvider(Path("~/src/workspace"))
        provider.is_dirty(repo)
    """

    def __init__(self, root: Path, git_client: GitClient = None):
        self.root = Path(root)
        self.git = git_client or GitClient()

    def _path(self, repo: Repo) -> str:
        return str(repo.to_path(self.root))

    def is_dirty(self, repo: Repo) -> bool:
        return self.git.is_dirty(self._path(repo))

    def is_outdated(self, repo: Repo) -> bool:
        counts = self.git.ahead_behind(self._path(repo))
        return counts is not None and counts[1] > 0

    def has_staged_cache(self, repo: Repo) -> bool:
        return self.git.has_cached(self._path(repo))

    def is_unreleased(self, repo: Repo) -> bool:
        # Untagged repositories do not count as unreleased
        described = self.git.describe(self._path(repo))
        if described is None:
            logger.debug(f"{repo}: no tags")
            return False
        return not described.exact
