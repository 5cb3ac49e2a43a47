"""
Tests for workspace repository discovery.
"""

from unittest.mock import MagicMock

import pytest

from repokeep.domain.repository import RepoSource
from repokeep.exit_codes import ConfigError
from repokeep.services.discovery_service import GitModulesDiscovery, parse_gitmodules


GITMODULES = """\
[submodule "libs/parser"]
\tpath = libs/parser
\turl = https://github.com/acme/parser.git
[submodule "apps/cli"]
\tpath = apps/cli
\turl = git@github.com:acme/cli.git
\tbranch = main
[submodule "broken"]
\tpath = broken
"""


def no_git():
    git = MagicMock()
    git.is_git_repo.return_value = False
    return git


class TestParseGitmodules:
    """Test reading .gitmodules content."""

    def test_submodules(self):
        repos = parse_gitmodules(GITMODULES)
        assert [r.path for r in repos] == ["libs/parser", "apps/cli"]
        assert repos[0].identity == "acme/parser"
        assert repos[1].identity == "acme/cli"
        assert all(r.source == RepoSource.GITMODULES for r in repos)

    def test_invalid(self):
        with pytest.raises(ConfigError):
            parse_gitmodules("path = nowhere\n")


class TestGitModulesDiscovery:
    """Test discovering repositories under a workspace root."""

    def test_from_gitmodules(self, tmp_path):
        (tmp_path / ".gitmodules").write_text(GITMODULES)
        repos = GitModulesDiscovery(no_git(), environ={}).discover(tmp_path)
        assert [r.path for r in repos] == ["libs/parser", "apps/cli"]

    def test_repo_overrides_attached(self, tmp_path):
        (tmp_path / ".gitmodules").write_text(GITMODULES)
        discovery = GitModulesDiscovery(
            no_git(),
            repo_overrides={"libs/parser/": {"branch": "develop", "disabled": ["rust-version"]}},
            environ={},
        )
        repos = discovery.discover(tmp_path)
        assert repos[0].config == {"branch": "develop", "disabled": ["rust-version"]}
        assert repos[1].config == {}

    def test_duplicate_paths(self, tmp_path):
        (tmp_path / ".gitmodules").write_text(
            GITMODULES + '[submodule "again"]\n\tpath = libs/parser\n\turl = https://example.com/x.git\n'
        )
        repos = GitModulesDiscovery(no_git(), environ={}).discover(tmp_path)
        assert [r.path for r in repos] == ["libs/parser", "apps/cli"]

    def test_root_repository_fallback(self, tmp_path):
        git = MagicMock()
        git.is_git_repo.return_value = True
        git.remote_url.return_value = "https://github.com/acme/workspace.git"

        repos = GitModulesDiscovery(git, environ={}).discover(tmp_path)

        assert len(repos) == 1
        assert repos[0].path == "."
        assert repos[0].source == RepoSource.GIT
        assert repos[0].identity == "acme/workspace"

    def test_github_actions_fallback(self, tmp_path):
        environ = {'GITHUB_SERVER_URL': 'https://github.com/', 'GITHUB_REPOSITORY': 'acme/tool'}
        repos = GitModulesDiscovery(no_git(), environ=environ).discover(tmp_path)
        assert repos[0].url == "https://github.com/acme/tool"
        assert repos[0].identity == "acme/tool"

    def test_nothing_found(self, tmp_path):
        assert GitModulesDiscovery(no_git(), environ={}).discover(tmp_path) == []
