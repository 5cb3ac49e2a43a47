"""
Repository discovery for repokeep.

A workspace's repositories are the submodules declared in its
``.gitmodules``. A workspace without submodules manages only itself.
"""

from abc import ABC, abstractmethod
import configparser
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from ..domain.repository import Repo, RepoSource, normalize_repo_path
from ..exit_codes import ConfigError
from ..infra.git_client import GitClient

logger = logging.getLogger(__name__)

GITMODULES = ".gitmodules"


class RepoDiscovery(ABC):
    """Produces the Repo records for a workspace root."""

    @abstractmethod
    def discover(self, root: Union[str, Path]) -> List[Repo]:
        ...


def parse_gitmodules(text: str, source: str = GITMODULES) -> List[Repo]:
    """
    Parse ``.gitmodules`` content.

    Sections without both ``path`` and ``url`` are skipped.

    Raises:
        ConfigError: the file is not valid git config syntax
    """
    parser = configparser.ConfigParser(interpolation=None, strict=False)
    try:
        parser.read_string(text, source=source)
    except configparser.Error as e:
        raise ConfigError(f"{source}: {e}")

    repos = []
    for section in parser.sections():
        if not section.startswith('submodule'):
            continue
        path = parser.get(section, 'path', fallback=None)
        url = parser.get(section, 'url', fallback=None)
        if not path or not url:
            logger.debug(f"Skipping incomplete {section} in {source}")
            continue
        repos.append(Repo.from_remote(path, url, RepoSource.GITMODULES))
    return repos


class GitModulesDiscovery(RepoDiscovery):
    """
    Discover repositories from ``.gitmodules``.

    Falls back to the workspace root itself (with its ``origin`` remote,
    or the GitHub Actions repository when there is no checkout). Per-repo
    overrides from the workspace ``repokeep.toml`` are attached as
    ``Repo.config``.

    Example:
        discovery = GitModulesDiscovery(repo_overrides={"libs/parser": {"branch": "main"}})
        repos = discovery.discover(Path("~/src/workspace"))
    """

    def __init__(
        self,
        git_client: Optional[GitClient] = None,
        repo_overrides: Optional[Mapping[str, Dict[str, Any]]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.git = git_client or GitClient()
        self.repo_overrides = {
            normalize_repo_path(path): dict(value)
            for path, value in (repo_overrides or {}).items()
        }
        self.environ = os.environ if environ is None else environ

    def _with_config(self, repo: Repo) -> Repo:
        overrides = self.repo_overrides.get(repo.path)
        if not overrides:
            return repo
        return Repo.from_remote(repo.path, repo.url, repo.source, overrides)

    def _root_repo(self, root: Path) -> Optional[Repo]:
        if self.git.is_git_repo(str(root)):
            url = self.git.remote_url(str(root))
            return Repo.from_remote('.', url, RepoSource.GIT)

        server = self.environ.get('GITHUB_SERVER_URL')
        repository = self.environ.get('GITHUB_REPOSITORY')
        if server and repository:
            url = f"{server.rstrip('/')}/{repository}"
            logger.debug(f"Using GitHub Actions repository {url}")
            return Repo.from_remote('.', url, RepoSource.GIT)

        return None

    def discover(self, root: Union[str, Path]) -> List[Repo]:
        root = Path(root)
        gitmodules = root / GITMODULES

        repos: List[Repo] = []
        if gitmodules.is_file():
            with open(gitmodules, 'r', encoding='utf-8') as f:
                repos = parse_gitmodules(f.read(), str(gitmodules))
            logger.debug(f"Found {len(repos)} submodules in {gitmodules}")

        if not repos:
            root_repo = self._root_repo(root)
            if root_repo is not None:
                repos = [root_repo]

        seen = set()
        result = []
        for repo in repos:
            if repo.path in seen:
                logger.warning(f"Duplicate repository path '{repo.path}' in {gitmodules}")
                continue
            seen.add(repo.path)
            result.append(self._with_config(repo))
        return result
