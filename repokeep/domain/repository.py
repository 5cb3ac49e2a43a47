"""
Repository domain object for repokeep.

Repo identifies one managed repository inside a workspace. It is created
during discovery, immutable for the duration of a run, and never mutated by
the staging, set or version engines.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Optional, Dict, Any
import re


class RepoSource(Enum):
    """Where a repository was discovered from."""
    GITMODULES = "gitmodules"   # Declared in the workspace's .gitmodules
    GIT = "git"                 # The workspace root repository itself


_GITHUB_URL = re.compile(
    r'^(?:https?://|git://|ssh://git@|git@)github\.com[:/]'
    r'(?P<owner>[^/]+)/(?P<name>[^/]+?)(?:\.git)?/?$'
)


def parse_remote(url: Optional[str]) -> Optional[tuple]:
    """
    Extract (owner, name) from a github.com remote URL.

    Returns:
        (owner, name) tuple, or None for other hosts
    """
    if not url:
        return None
    match = _GITHUB_URL.match(url.strip())
    if not match:
        return None
    return match.group('owner'), match.group('name')


def normalize_repo_path(path: str) -> str:
    """Normalize a workspace-relative path into its identifier form."""
    normalized = PurePosixPath(str(path).replace('\\', '/').strip())
    text = normalized.as_posix()
    if text in ('', '.'):
        return '.'
    return text.strip('/')


@dataclass(frozen=True)
class Repo:
    """
    Immutable reference to a repository in the workspace.

    Attributes:
        path: Workspace-relative POSIX path, also the identifier used by
            repo sets and staged changes
        url: Remote URL, if known
        owner: Remote owner (github.com remotes only)
        name: Remote repository name (github.com remotes only)
        source: How the repository was discovered
        config: Repo-local configuration overrides

    Example:
        repo = Repo.from_remote("libs/parser", "https://github.com/acme/parser.git")
        repo.identity  # "acme/parser"
    """
    path: str
    url: Optional[str] = None
    owner: Optional[str] = None
    name: Optional[str] = None
    source: RepoSource = RepoSource.GITMODULES
    config: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_remote(
        cls,
        path: str,
        url: Optional[str] = None,
        source: RepoSource = RepoSource.GITMODULES,
        config: Optional[Dict[str, Any]] = None,
    ) -> 'Repo':
        """Create a Repo, deriving owner/name from the remote URL."""
        remote = parse_remote(url)
        owner, name = remote if remote else (None, None)
        return cls(
            path=normalize_repo_path(path),
            url=url,
            owner=owner,
            name=name,
            source=source,
            config=dict(config or {}),
        )

    @property
    def identity(self) -> Optional[str]:
        """Remote identity as ``owner/name``, if known."""
        if self.owner and self.name:
            return f"{self.owner}/{self.name}"
        return None

    @property
    def display_name(self) -> str:
        return self.name or Path(self.path).name or self.path

    def to_path(self, root: Path) -> Path:
        """Absolute location of the repository under ``root``."""
        if self.path == '.':
            return Path(root)
        return Path(root) / self.path

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            'path': self.path,
            'source': self.source.value,
        }
        if self.url:
            result['url'] = self.url
        if self.identity:
            result['repo'] = self.identity
        if self.config:
            result['config'] = dict(self.config)
        return result

    def __str__(self) -> str:
        return self.path
