"""
Tests for the change staging engine.

Covers:
- Idempotent proposals and conflict detection
- Apply never overwriting files changed since the proposal
- Persistence round trips and corrupt artifacts
- Atomic writes keeping file modes
"""

import gzip
import json
import os
import stat
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from repokeep.domain.change import Change, OutcomeStatus, fingerprint
from repokeep.errors import ConflictError, CorruptStoreError, IoError
from repokeep.services import staging_service
from repokeep.services.staging_service import (
    SCHEMA,
    ChangeStagingEngine,
    StagingHandle,
    StagingStore,
)

ORIGINAL = '[project]\nname = "demo"\nversion = "1.0.0"\n'
UPDATED = '[project]\nname = "demo"\nversion = "2.0.0"\n'


@pytest.fixture
def workspace(tmp_path):
    repo = tmp_path / "libs" / "demo"
    repo.mkdir(parents=True)
    (repo / "pyproject.toml").write_text(ORIGINAL)
    return tmp_path


@pytest.fixture
def engine(workspace):
    return ChangeStagingEngine(workspace, parallelism=2)


def make_change(content=UPDATED, baseline=ORIGINAL, path="pyproject.toml", repo="libs/demo"):
    return Change(repo, path, fingerprint(baseline), content, producer="python-version")


class TestPropose:
    """Test merging proposals into the store."""

    def test_identical_proposal_is_noop(self, engine):
        engine.propose(make_change())
        engine.propose(make_change())
        assert len(engine.store) == 1

    def test_same_baseline_replaces(self, engine):
        engine.propose(make_change())
        engine.propose(make_change(content=ORIGINAL.replace("1.0.0", "3.0.0")))
        assert len(engine.store) == 1
        assert "3.0.0" in engine.store.get("libs/demo", "pyproject.toml").new_content

    def test_different_baseline_conflicts(self, engine):
        engine.propose(make_change())
        with pytest.raises(ConflictError) as exc_info:
            engine.propose(make_change(baseline="something else"))
        assert exc_info.value.repo == "libs/demo"
        assert exc_info.value.path == "pyproject.toml"
        # The first proposal is untouched
        assert engine.store.get("libs/demo", "pyproject.toml") == make_change()

    def test_different_files_coexist(self, engine):
        engine.propose(make_change())
        engine.propose(make_change(path="setup.py", baseline=None, content="setup()\n"))
        assert [c.path for c in engine.store] == ["pyproject.toml", "setup.py"]
        assert engine.store.repos() == ["libs/demo"]

    def test_concurrent_proposals(self, engine):
        changes = [make_change(path=f"file{i}.txt", baseline=None, content=str(i)) for i in range(40)]
        with ThreadPoolExecutor(max_workers=8) as executor:
            list(executor.map(engine.propose, changes + changes))
        assert len(engine.store) == 40

    def test_concurrent_conflicts_keep_one(self, engine):
        def attempt(i):
            try:
                engine.propose(make_change(baseline=f"seen by producer {i}"))
            except ConflictError:
                return False
            return True

        with ThreadPoolExecutor(max_workers=8) as executor:
            accepted = list(executor.map(attempt, range(20)))

        assert accepted.count(True) == 1
        assert len(engine.store) == 1


class TestApply:
    """Test applying staged changes to disk."""

    def test_apply_writes_and_clears(self, engine, workspace):
        engine.propose(make_change())
        report = engine.apply()

        assert report.success
        assert len(report.applied) == 1
        assert (workspace / "libs/demo/pyproject.toml").read_text() == UPDATED
        assert len(engine.store) == 0
        assert not engine.path.exists()

    def test_stale_file_is_not_overwritten(self, engine, workspace):
        target = workspace / "libs/demo/pyproject.toml"
        engine.propose(make_change())
        target.write_text(ORIGINAL + "# edited by hand\n")

        report = engine.apply()

        assert not report.success
        assert len(report.stale) == 1
        assert "changed since" in str(report.stale[0].error)
        assert target.read_text() == ORIGINAL + "# edited by hand\n"
        # The stale change stays staged and persisted
        assert len(engine.store) == 1
        assert engine.load_pending() == engine.store

    def test_already_applied_counts_as_applied(self, engine, workspace):
        engine.propose(make_change())
        (workspace / "libs/demo/pyproject.toml").write_text(UPDATED)

        report = engine.apply()

        assert len(report.applied) == 1
        assert report.success

    def test_new_file(self, engine, workspace):
        engine.propose(make_change(path="CHANGELOG.md", baseline=None, content="# Changes\n"))
        report = engine.apply()
        assert report.success
        assert (workspace / "libs/demo/CHANGELOG.md").read_text() == "# Changes\n"

    def test_created_meanwhile_is_stale(self, engine, workspace):
        engine.propose(make_change(path="CHANGELOG.md", baseline=None, content="# Changes\n"))
        (workspace / "libs/demo/CHANGELOG.md").write_text("mine\n")
        report = engine.apply()
        assert len(report.stale) == 1
        assert (workspace / "libs/demo/CHANGELOG.md").read_text() == "mine\n"

    def test_path_outside_workspace_fails(self, engine):
        engine.propose(make_change(path="../../../outside.txt", baseline=None, content="x"))
        report = engine.apply()
        assert len(report.failed) == 1
        assert report.failed[0].status == OutcomeStatus.FAILED

    def test_failed_write_does_not_stop_the_rest(self, engine, workspace, monkeypatch):
        (workspace / "libs/other").mkdir()
        (workspace / "libs/other/pyproject.toml").write_text(ORIGINAL)
        engine.propose(make_change())
        engine.propose(make_change(repo="libs/other"))

        real_write = staging_service.write_atomic

        def write_or_fail(path, data):
            if Path(path).parent.name == "other":
                raise OSError(28, "No space left on device")
            real_write(path, data)

        monkeypatch.setattr(staging_service, "write_atomic", write_or_fail)
        report = engine.apply()

        assert len(report.applied) == 1
        assert len(report.failed) == 1
        assert report.failed[0].change.repo == "libs/other"
        assert isinstance(report.failed[0].error, IoError)
        assert (workspace / "libs/demo/pyproject.toml").read_text() == UPDATED
        assert (workspace / "libs/other/pyproject.toml").read_text() == ORIGINAL

        # Only the failed entry stays staged, and it applies on its own later
        monkeypatch.setattr(staging_service, "write_atomic", real_write)
        fresh = ChangeStagingEngine(workspace)
        pending = fresh.load_pending()
        assert [c.repo for c in pending] == ["libs/other"]

        report = fresh.apply(pending)
        assert report.success
        assert [o.change.repo for o in report.applied] == ["libs/other"]
        assert (workspace / "libs/other/pyproject.toml").read_text() == UPDATED

    def test_file_mode_is_kept(self, engine, workspace):
        target = workspace / "libs/demo/pyproject.toml"
        os.chmod(target, 0o755)
        engine.propose(make_change())
        engine.apply()
        assert stat.S_IMODE(target.stat().st_mode) == 0o755

    def test_save_false_only_persists(self, engine, workspace):
        engine.propose(make_change())
        report = engine.apply(save=False)

        assert not report.saved
        assert len(report.pending) == 1
        assert (workspace / "libs/demo/pyproject.toml").read_text() == ORIGINAL
        assert engine.path.exists()

        fresh = ChangeStagingEngine(workspace)
        assert fresh.load_pending() == engine.store

    def test_reapply_after_interruption(self, engine, workspace):
        engine.propose(make_change())
        engine.apply(save=False)

        fresh = ChangeStagingEngine(workspace)
        report = fresh.apply(fresh.load_pending())
        assert report.success
        assert (workspace / "libs/demo/pyproject.toml").read_text() == UPDATED
        assert not fresh.path.exists()

    def test_report_to_dict(self, engine):
        engine.propose(make_change())
        data = engine.apply().to_dict()
        assert data['type'] == 'summary'
        assert data['applied'] == 1
        assert data['details'][0]['status'] == 'applied'


class TestPersistence:
    """Test persisting and loading the store."""

    def test_round_trip(self, engine):
        engine.propose(make_change())
        engine.propose(make_change(path="setup.py", baseline=None, content="setup()\n"))
        handle = engine.persist()

        assert handle.digest is not None
        loaded = engine.load(handle)
        assert loaded == engine.store
        assert [c.producer for c in loaded] == ["python-version", "python-version"]

    def test_artifact_is_gzipped_json(self, engine):
        engine.propose(make_change())
        engine.persist()
        data = json.loads(gzip.decompress(engine.path.read_bytes()))
        assert data['schema'] == SCHEMA
        assert data['changes'][0]['repo'] == "libs/demo"

    def test_persist_is_deterministic(self, engine):
        engine.propose(make_change())
        first = engine.persist()
        second = engine.persist()
        assert first.digest == second.digest

    def test_empty_store_removes_artifact(self, engine):
        engine.propose(make_change())
        engine.persist()
        handle = engine.persist(StagingStore())
        assert handle.digest is None
        assert not engine.path.exists()
        assert len(engine.load(handle)) == 0

    def test_missing_artifact(self, engine):
        with pytest.raises(CorruptStoreError):
            engine.load()
        assert len(engine.load_pending()) == 0

    def test_rewritten_artifact(self, engine):
        engine.propose(make_change())
        handle = engine.persist()
        engine.propose(make_change(path="setup.py", baseline=None, content="setup()\n"))
        engine.persist()

        with pytest.raises(CorruptStoreError):
            engine.load(handle)

    def test_garbage_artifact(self, engine):
        engine.path.parent.mkdir(parents=True, exist_ok=True)
        engine.path.write_bytes(b"not gzip at all")
        with pytest.raises(CorruptStoreError):
            engine.load()

    def test_unknown_schema(self, engine):
        engine.path.parent.mkdir(parents=True, exist_ok=True)
        engine.path.write_bytes(gzip.compress(json.dumps({'schema': 'other/9', 'changes': []}).encode()))
        with pytest.raises(CorruptStoreError) as exc_info:
            engine.load()
        assert "schema" in str(exc_info.value)

    def test_discard(self, engine):
        engine.propose(make_change())
        engine.persist()
        assert engine.discard() is True
        assert len(engine.store) == 0
        assert not engine.path.exists()


class TestStagingStore:
    """Test the store's persisted form."""

    def test_duplicate_entries_rejected(self):
        entry = make_change().to_dict()
        with pytest.raises(CorruptStoreError):
            StagingStore.from_dict({'schema': SCHEMA, 'changes': [entry, entry]})

    def test_malformed_entry(self):
        with pytest.raises(CorruptStoreError):
            StagingStore.from_dict({'schema': SCHEMA, 'changes': [{'repo': 'x'}]})

    def test_not_an_object(self):
        with pytest.raises(CorruptStoreError):
            StagingStore.from_dict([])

    def test_custom_artifact_path(self, workspace):
        engine = ChangeStagingEngine(workspace, "state/pending.gz")
        assert engine.path == workspace / "state" / "pending.gz"
        assert isinstance(StagingHandle(engine.path), StagingHandle)
