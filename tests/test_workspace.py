"""
Tests for Workspace: locking, variables and staged runs.
"""

from datetime import date
import os
from unittest.mock import MagicMock

import pytest

from repokeep.config import get_default_config
from repokeep.domain.change import Change
from repokeep.domain.repository import Repo
from repokeep import workspace as workspace_module
from repokeep.errors import EmptyResolution, UnknownProducerError, WorkspaceLockedError
from repokeep.exit_codes import NoReposFoundError
from repokeep.producers import PythonVersionProducer
from repokeep.release_env import ReleaseEnv
from repokeep.services.state_provider import RepoStateProvider
from repokeep.version_spec import resolve
from repokeep.workspace import BAD_SET, GOOD_SET, Workspace

TODAY = date(2026, 10, 18)


class CleanState(RepoStateProvider):
    def is_dirty(self, repo):
        return False

    def is_outdated(self, repo):
        return False

    def has_staged_cache(self, repo):
        return False

    def is_unreleased(self, repo):
        return True


def write_pyproject(root, path, version):
    repo_dir = root / path
    repo_dir.mkdir(parents=True, exist_ok=True)
    (repo_dir / "pyproject.toml").write_text(f'[project]\nname = "x"\nversion = "{version}"\n')
    return repo_dir / "pyproject.toml"


def make_workspace(root, repos=None):
    git = MagicMock()
    git.is_git_repo.return_value = False
    repos = repos if repos is not None else [Repo.from_remote("libs/a"), Repo.from_remote("libs/b")]
    return Workspace(root, config=get_default_config(), repos=repos, state_provider=CleanState(), git_client=git)


class TestLock:
    """Test the exclusive workspace lock."""

    def test_lock_is_exclusive(self, tmp_path):
        workspace = make_workspace(tmp_path)
        with workspace.lock():
            assert workspace.lock_path.exists()
            with pytest.raises(WorkspaceLockedError) as exc_info:
                with make_workspace(tmp_path).lock():
                    pass
            assert exc_info.value.owner is not None
        assert not workspace.lock_path.exists()

    def test_lock_released_on_error(self, tmp_path):
        workspace = make_workspace(tmp_path)
        with pytest.raises(RuntimeError):
            with workspace.lock():
                raise RuntimeError("boom")
        assert not workspace.lock_path.exists()

    def test_lock_of_dead_process_is_replaced(self, tmp_path, monkeypatch):
        workspace = make_workspace(tmp_path)
        workspace.lock_path.parent.mkdir(parents=True, exist_ok=True)
        workspace.lock_path.write_text("4242\n")
        monkeypatch.setattr(workspace_module, "_pid_alive", lambda pid: False)

        with workspace.lock():
            assert workspace.lock_path.read_text().strip() == str(os.getpid())
        assert not workspace.lock_path.exists()

    def test_unreadable_lock_is_kept(self, tmp_path):
        workspace = make_workspace(tmp_path)
        workspace.lock_path.parent.mkdir(parents=True, exist_ok=True)
        workspace.lock_path.write_text("")

        with pytest.raises(WorkspaceLockedError) as exc_info:
            with workspace.lock():
                pass
        assert str(workspace.lock_path) in str(exc_info.value)
        assert workspace.lock_path.exists()


class TestVariables:
    """Test variable layering and version resolution."""

    def test_workspace_variables(self, tmp_path):
        (tmp_path / "repokeep.toml").write_text('[variables]\nchannel = "beta"\n')
        workspace = make_workspace(tmp_path)
        variables = workspace.variables(release_env=ReleaseEnv(), today=TODAY)
        assert variables['date'] == "2026-10-18"
        assert variables['channel'] == "beta"

    def test_defines_override(self, tmp_path):
        (tmp_path / "repokeep.toml").write_text('[variables]\nchannel = "beta"\n')
        workspace = make_workspace(tmp_path)
        variables = workspace.variables(defines={'channel': 'rc1'}, release_env=ReleaseEnv(), today=TODAY)
        assert variables['channel'] == "rc1"

    def test_repo_variables(self, tmp_path):
        repo = Repo.from_remote("libs/a", config={'variables': {'channel': 'alpha'}, 'branch': 'stable'})
        workspace = make_workspace(tmp_path, [repo])
        variables = workspace.variables(repo, release_env=ReleaseEnv(), today=TODAY)
        assert variables['channel'] == "alpha"
        assert variables['branch'] == "stable"

    def test_resolve_version(self, tmp_path):
        (tmp_path / "repokeep.toml").write_text('[variables]\nchannel = "beta"\n')
        workspace = make_workspace(tmp_path)
        version = workspace.resolve_version(
            "%tag || 1.0.0-%channel", environment={}, release_env=ReleaseEnv(), today=TODAY,
        )
        assert str(version) == "1.0.0-beta"

    def test_resolve_version_uses_prefixes(self, tmp_path):
        workspace = make_workspace(tmp_path)
        version = workspace.resolve_version(
            "%tag", environment={}, release_env=ReleaseEnv('push', 'refs/tags/v3.0.0'), today=TODAY,
        )
        assert version.prefix == "v"

    def test_unresolvable_version_raises(self, tmp_path):
        workspace = make_workspace(tmp_path)
        with pytest.raises(EmptyResolution):
            workspace.resolve_version("%custom", environment={}, release_env=ReleaseEnv(), today=TODAY)

    def test_dated_fallback_on_request(self, tmp_path):
        workspace = make_workspace(tmp_path)
        version = workspace.resolve_version(
            "%custom", environment={}, release_env=ReleaseEnv(), today=TODAY, fallback=True,
        )
        assert version.kind == "date"
        assert version.text == "2026-10-18"


class TestStage:
    """Test staged runs over repository sets."""

    def test_save_applies_and_records_good(self, tmp_path):
        first = write_pyproject(tmp_path, "libs/a", "1.0.0")
        second = write_pyproject(tmp_path, "libs/b", "1.0.0")
        workspace = make_workspace(tmp_path)

        run = workspace.stage("@all", ["python-version"], version=resolve("2.0.0"), save=True, today=TODAY)

        assert run.success
        assert run.good == ["libs/a", "libs/b"]
        assert run.bad == []
        assert 'version = "2.0.0"' in first.read_text()
        assert 'version = "2.0.0"' in second.read_text()
        assert workspace.sets.resolve(GOOD_SET) == {"libs/a", "libs/b"}
        assert workspace.sets.resolve(BAD_SET) == set()

    def test_without_save_only_stages(self, tmp_path):
        first = write_pyproject(tmp_path, "libs/a", "1.0.0")
        workspace = make_workspace(tmp_path)

        run = workspace.stage("@all", ["python-version"], version=resolve("2.0.0"), save=False, today=TODAY)

        assert len(run.report.pending) == 1
        assert 'version = "1.0.0"' in first.read_text()

        report = make_workspace(tmp_path).apply_pending()
        assert report.success
        assert 'version = "2.0.0"' in first.read_text()

    def test_conflict_marks_repo_bad(self, tmp_path):
        write_pyproject(tmp_path, "libs/a", "1.0.0")
        write_pyproject(tmp_path, "libs/b", "1.0.0")
        workspace = make_workspace(tmp_path)
        workspace.staging.store.put(Change("libs/b", "pyproject.toml", "sha256:0000", "stale\n"))
        workspace.staging.persist()

        run = workspace.stage("@all", ["python-version"], version=resolve("2.0.0"), today=TODAY)

        assert not run.success
        assert run.good == ["libs/a"]
        assert run.bad == ["libs/b"]
        assert any("conflicting" in m for m in run.diagnostics["libs/b"])
        assert workspace.sets.resolve(BAD_SET) == {"libs/b"}
        # The next run can target exactly the leftovers
        assert [r.path for r in workspace.sets.resolve_repos("@all - good")] == ["libs/b"]

    def test_bump_part(self, tmp_path):
        first = write_pyproject(tmp_path, "libs/a", "1.4.2")
        workspace = make_workspace(tmp_path, [Repo.from_remote("libs/a")])
        workspace.stage("@all", ["python-version"], bump="minor", today=TODAY)
        assert 'version = "1.5.0"' in first.read_text()

    def test_disabled_producer(self, tmp_path):
        first = write_pyproject(tmp_path, "libs/a", "1.0.0")
        repo = Repo.from_remote("libs/a", config={'disabled': ['python-version']})
        workspace = make_workspace(tmp_path, [repo])

        run = workspace.stage("@all", ["python-version"], version=resolve("2.0.0"), today=TODAY)

        assert run.success
        assert not run.report.outcomes
        assert 'version = "1.0.0"' in first.read_text()

    def test_empty_selection(self, tmp_path):
        workspace = make_workspace(tmp_path)
        with pytest.raises(NoReposFoundError):
            workspace.stage("@dirty", ["python-version"], version=resolve("2.0.0"))

    def test_unknown_producer(self, tmp_path):
        workspace = make_workspace(tmp_path)
        with pytest.raises(UnknownProducerError):
            workspace.stage("@all", ["go-version"], version=resolve("2.0.0"))

    def test_run_to_dict(self, tmp_path):
        write_pyproject(tmp_path, "libs/a", "1.0.0")
        workspace = make_workspace(tmp_path, [Repo.from_remote("libs/a")])
        data = workspace.stage("@all", ["python-version"], version=resolve("2.0.0"), today=TODAY).to_dict()
        assert data['good'] == ["libs/a"]
        assert data['report']['applied'] == 1

    def test_malformed_manifest_marks_repo_bad(self, tmp_path):
        first = write_pyproject(tmp_path, "libs/a", "1.0.0")
        (tmp_path / "libs/b").mkdir(parents=True)
        (tmp_path / "libs/b/pyproject.toml").write_text('project = "legacy"\n')
        workspace = make_workspace(tmp_path)

        run = workspace.stage("@all", ["python-version"], bump="patch", today=TODAY)

        assert run.good == ["libs/a"]
        assert run.bad == ["libs/b"]
        assert any("not a table" in m for m in run.diagnostics["libs/b"])
        assert 'version = "1.0.1"' in first.read_text()
        assert workspace.sets.resolve(BAD_SET) == {"libs/b"}

    def test_crashing_producer_marks_repo_bad(self, tmp_path, monkeypatch):
        first = write_pyproject(tmp_path, "libs/a", "1.0.0")
        write_pyproject(tmp_path, "libs/b", "1.0.0")
        produce = PythonVersionProducer.produce

        def produce_or_crash(self, repo, context):
            if repo.path == "libs/b":
                raise KeyError("version")
            return produce(self, repo, context)

        monkeypatch.setattr(PythonVersionProducer, "produce", produce_or_crash)
        workspace = make_workspace(tmp_path)

        run = workspace.stage("@all", ["python-version"], version=resolve("2.0.0"), today=TODAY)

        assert run.good == ["libs/a"]
        assert run.bad == ["libs/b"]
        assert any(m.startswith("KeyError") for m in run.diagnostics["libs/b"])
        assert 'version = "2.0.0"' in first.read_text()
