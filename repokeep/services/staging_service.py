"""
Change staging service for repokeep.

Collects proposed file edits from independent producers, persists them as
one compressed artifact, and applies them with conflict detection.

Lifecycle:
    engine = ChangeStagingEngine(root)
    engine.propose(change)          # from any number of producer threads
    handle = engine.persist()       # durable; survives interruption
    ...
    store = engine.load(handle)     # CorruptStoreError if rewritten meanwhile
    report = engine.apply(store)    # stale and failed entries stay staged

Applying never overwrites a file whose content no longer matches the
fingerprint recorded when the change was computed.
"""

import logging
import threading
import zlib
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from ..config import STATE_DIR
from ..domain.change import (
    ApplyOutcome,
    ApplyReport,
    Change,
    OutcomeStatus,
    fingerprint,
)
from ..errors import (
    ConflictError,
    CorruptStoreError,
    IoError,
    SerializationError,
    StaleChange,
)
from ..infra.file_store import FileStore, digest, read_bytes, write_atomic

logger = logging.getLogger(__name__)

SCHEMA = "repokeep.changes/1"
DEFAULT_PATH = f"{STATE_DIR}/changes.gz"

Key = Tuple[str, str]


class StagingStore:
    """
    Pending changes keyed by (repo, path), in proposal order.

    At most one change per file. The store does no locking of its own;
    ChangeStagingEngine serializes access to the store it owns.
    """

    def __init__(self, changes: Optional[List[Change]] = None):
        self._entries: 'OrderedDict[Key, Change]' = OrderedDict()
        for change in changes or []:
            self._entries[change.key] = change

    def get(self, repo: str, path: str) -> Optional[Change]:
        return self._entries.get((repo, path))

    def put(self, change: Change) -> None:
        self._entries[change.key] = change

    def remove(self, key: Key) -> Optional[Change]:
        return self._entries.pop(key, None)

    def changes(self) -> List[Change]:
        return list(self._entries.values())

    def repos(self) -> List[str]:
        """Repositories with pending changes, in first-proposed order."""
        return list(OrderedDict.fromkeys(repo for repo, _ in self._entries))

    def copy(self) -> 'StagingStore':
        return StagingStore(self.changes())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'schema': SCHEMA,
            'changes': [c.to_dict() for c in self._entries.values()],
        }

    @classmethod
    def from_dict(cls, data: Any, source: str = "<memory>") -> 'StagingStore':
        """
        Rebuild a store from its persisted form.

        Raises:
            CorruptStoreError: unknown schema or malformed entries
        """
        if not isinstance(data, dict):
            raise CorruptStoreError(source, "expected a JSON object")
        schema = data.get('schema')
        if schema != SCHEMA:
            raise CorruptStoreError(source, f"unrecognized schema {schema!r}")
        entries = data.get('changes')
        if not isinstance(entries, list):
            raise CorruptStoreError(source, "'changes' must be a list")

        store = cls()
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise CorruptStoreError(source, f"change #{index} is not an object")
            try:
                change = Change.from_dict(entry)
            except (KeyError, TypeError) as e:
                raise CorruptStoreError(source, f"change #{index} is malformed: {e}")
            if change.key in store:
                raise CorruptStoreError(source, f"duplicate entry for {change}")
            store.put(change)
        return store

    def __contains__(self, key: Key) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[Change]:
        return iter(self.changes())

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StagingStore):
            return NotImplemented
        return self.changes() == other.changes()

    def __repr__(self) -> str:
        return f"StagingStore({len(self)} changes)"


@dataclass(frozen=True)
class StagingHandle:
    """
    Identifies one persisted artifact.

    ``digest`` is the sha256 of the bytes written, or None when the store
    was empty and the artifact removed.
    """
    path: Path
    digest: Optional[str] = None


class ChangeStagingEngine:
    """
    The transactional core: propose, persist, load and apply changes.

    Example:
        engine = ChangeStagingEngine(Path("~/src/workspace"))
        engine.propose(Change("libs/parser", "pyproject.toml", baseline, content))
        report = engine.apply()
        if not report.success:
            for outcome in report.stale:
                print(outcome.error)
    """

    def __init__(
        self,
        root: Union[str, Path],
        path: Optional[Union[str, Path]] = None,
        parallelism: int = 1,
    ):
        """
        Initialize ChangeStagingEngine.

        Args:
            root: Workspace root; change paths are relative to it
            path: Artifact location, relative to root unless absolute
            parallelism: Number of files applied concurrently
        """
        self.root = Path(root)
        artifact = Path(path or DEFAULT_PATH)
        if not artifact.is_absolute():
            artifact = self.root / artifact
        self.file_store = FileStore(artifact, compress=True)
        self.parallelism = max(1, int(parallelism))
        self.store = StagingStore()
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self.file_store.path

    def propose(self, change: Change) -> None:
        """
        Stage a change.

        Re-proposing an identical change is a no-op. A change with the same
        baseline but different content replaces the staged one.

        Raises:
            ConflictError: a change for the same file is staged against a
                different baseline
        """
        with self._lock:
            existing = self.store.get(change.repo, change.path)
            if existing is not None:
                if existing.baseline_hash != change.baseline_hash:
                    raise ConflictError(
                        change.repo, change.path,
                        existing.baseline_hash, change.baseline_hash,
                    )
                if existing == change:
                    return
                logger.debug(f"Replacing staged change for {change} ({change.producer})")
            self.store.put(change)

    def persist(self, store: Optional[StagingStore] = None) -> StagingHandle:
        """
        Write the store to the artifact; an empty store removes it.

        Raises:
            SerializationError: the artifact could not be written
        """
        with self._lock:
            store = self.store if store is None else store
            data = store.to_dict()
            empty = not store

        try:
            if empty:
                self.file_store.remove()
                return StagingHandle(self.path, None)
            value = self.file_store.write(data)
        except (OSError, TypeError, ValueError) as e:
            raise SerializationError(str(self.path), e) from e

        logger.debug(f"Persisted {len(data['changes'])} changes to {self.path}")
        return StagingHandle(self.path, value)

    def load(self, handle: Optional[StagingHandle] = None) -> StagingStore:
        """
        Read a persisted store.

        With a handle, the artifact must still be exactly what that handle
        recorded.

        Raises:
            CorruptStoreError: missing, unreadable, modified since the
                handle was taken, or not a recognized changes document
        """
        path = handle.path if handle is not None else self.path
        source = str(path)

        try:
            raw = read_bytes(path)
        except OSError as e:
            raise CorruptStoreError(source, f"unreadable: {e}")

        if raw is None:
            if handle is not None and handle.digest is None:
                return StagingStore()
            raise CorruptStoreError(source, "no persisted changes")

        if handle is not None and digest(raw) != handle.digest:
            raise CorruptStoreError(source, "rewritten by another invocation")

        try:
            data = self.file_store.decode(raw)
        except (OSError, EOFError, zlib.error, ValueError) as e:
            raise CorruptStoreError(source, f"not a compressed changes document: {e}")

        return StagingStore.from_dict(data, source)

    def load_pending(self) -> StagingStore:
        """The persisted store, or an empty one if nothing is staged."""
        if not self.file_store.exists():
            return StagingStore()
        return self.load()

    def discard(self) -> bool:
        """Drop every staged change, in memory and on disk."""
        with self._lock:
            self.store = StagingStore()
        try:
            return self.file_store.remove()
        except OSError as e:
            raise SerializationError(str(self.path), e) from e

    def _target(self, change: Change) -> Path:
        base = self.root if change.repo == '.' else self.root / change.repo
        target = (base / change.path).resolve()
        root = self.root.resolve()
        if target != root and root not in target.parents:
            raise ValueError(f"path escapes the workspace: {change.path}")
        return target

    def _apply_one(self, change: Change) -> ApplyOutcome:
        """Read, fingerprint and, if still at baseline, replace one file."""
        try:
            target = self._target(change)
            current = read_bytes(target)
        except (OSError, ValueError) as e:
            return ApplyOutcome(change, OutcomeStatus.FAILED, IoError(change.repo, change.path, e))

        actual = fingerprint(current)
        content = change.new_content.encode('utf-8')

        if actual == fingerprint(content):
            # Already written by an earlier, interrupted apply
            logger.debug(f"{change}: already up to date")
            return ApplyOutcome(change, OutcomeStatus.APPLIED)

        if actual != change.baseline_hash:
            return ApplyOutcome(
                change,
                OutcomeStatus.STALE,
                StaleChange(change.repo, change.path, change.baseline_hash, actual),
            )

        try:
            write_atomic(target, content)
        except OSError as e:
            return ApplyOutcome(change, OutcomeStatus.FAILED, IoError(change.repo, change.path, e))

        logger.debug(f"{change}: written")
        return ApplyOutcome(change, OutcomeStatus.APPLIED)

    def apply(self, store: Optional[StagingStore] = None, save: bool = True) -> ApplyReport:
        """
        Apply staged changes.

        Args:
            store: Store to apply (the engine's own store if None). Applied
                entries are removed from it.
            save: When False nothing is written to the repositories; the
                store is persisted and every entry reported as pending.

        Returns:
            ApplyReport; stale and failed entries remain staged

        Raises:
            SerializationError: the remaining store could not be persisted
        """
        store = self.store if store is None else store
        report = ApplyReport(saved=save)

        with self._lock:
            changes = store.changes()

        if not changes:
            self.persist(store)
            return report

        if not save:
            self.persist(store)
            for change in changes:
                report.add(ApplyOutcome(change, OutcomeStatus.PENDING))
            logger.info(f"Staged {len(changes)} changes in {self.path}")
            return report

        with ThreadPoolExecutor(max_workers=self.parallelism) as executor:
            futures = [executor.submit(self._apply_one, change) for change in changes]
            outcomes = [future.result() for future in futures]

        with self._lock:
            for outcome in outcomes:
                report.add(outcome)
                if outcome.status == OutcomeStatus.APPLIED:
                    store.remove(outcome.change.key)
                elif outcome.error is not None:
                    logger.warning(str(outcome.error))

        self.persist(store)
        logger.info(
            f"Applied {len(report.applied)} changes "
            f"({len(report.stale)} stale, {len(report.failed)} failed)"
        )
        return report
