"""
Repository set service for repokeep.

Maintains named sets of repository identifiers on disk and evaluates set
expressions over them (see ``repokeep.set_query``).

Persisted sets live under ``.repokeep/sets/``:
    good               undated base file, written with primary=True
    good-2026-10-18    dated snapshot; only the newest few are retained

Set files hold one identifier per line. Blank lines and ``#`` comments are
ignored when reading and kept when a set is rewritten, so sets can be
edited by hand.
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import date as _date
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from rapidfuzz import fuzz

from ..config import STATE_DIR
from ..domain.repository import Repo
from ..errors import ParseError, UnknownSetError
from ..infra.file_store import write_atomic
from .. import set_query
from .state_provider import COMPUTED_SETS, RepoStateProvider

logger = logging.getLogger(__name__)

DEFAULT_DIRECTORY = f"{STATE_DIR}/sets"
DEFAULT_RETAIN = 3

_SNAPSHOT = re.compile(r'^(?P<base>.+)-(?P<date>\d{4}-\d{2}-\d{2})$')
_HEADER = re.compile(r'^#\s*repokeep:\s*(?:(?P<date>\d{4}-\d{2}-\d{2})\b)?\s*(?P<hint>.*)$')
_VALID_NAME = re.compile(r'^[A-Za-z0-9_][A-Za-z0-9_.-]*$')


class RepoSet:
    """
    An ordered collection of distinct repository identifiers.

    Membership is order-independent; the order and the raw file lines are
    kept only so a rewritten file stays recognizable.
    """

    def __init__(
        self,
        members: Iterable[str] = (),
        lines: Optional[List[str]] = None,
        hint: Optional[str] = None,
        date: Optional[str] = None,
    ):
        self.members: Tuple[str, ...] = tuple(dict.fromkeys(m for m in members if m))
        self.lines = list(lines) if lines is not None else None
        self.hint = hint
        self.date = date

    @classmethod
    def parse(cls, text: str) -> 'RepoSet':
        members = []
        lines = []
        hint = date = None

        for line in text.splitlines():
            stripped = line.strip()
            header = _HEADER.match(stripped)
            if header:
                date = header.group('date')
                hint = header.group('hint') or None
                continue
            lines.append(line)
            if stripped and not stripped.startswith('#'):
                members.append(stripped)

        return cls(members, lines=lines, hint=hint, date=date)

    def render(self, hint: Optional[str] = None, date: Optional[str] = None) -> str:
        """File representation, preserving comments and hand-edited order."""
        out = []
        header = ' '.join(p for p in (date, hint) if p)
        if header:
            out.append(f"# repokeep: {header}")

        wanted = set(self.members)
        written = set()
        for line in self.lines or []:
            stripped = line.strip()
            if not stripped or stripped.startswith('#'):
                out.append(line)
            elif stripped in wanted and stripped not in written:
                out.append(stripped)
                written.add(stripped)

        out.extend(m for m in self.members if m not in written)
        return '\n'.join(out) + '\n'

    def ids(self) -> FrozenSet[str]:
        return frozenset(self.members)

    def to_dict(self) -> Dict[str, object]:
        result: Dict[str, object] = {'members': list(self.members)}
        if self.hint:
            result['hint'] = self.hint
        if self.date:
            result['date'] = self.date
        return result

    def __iter__(self) -> Iterator[str]:
        return iter(self.members)

    def __len__(self) -> int:
        return len(self.members)

    def __contains__(self, item: object) -> bool:
        return item in self.ids()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RepoSet):
            return NotImplemented
        return self.ids() == other.ids()

    def __repr__(self) -> str:
        return f"RepoSet({list(self.members)!r})"


def _check_name(name: str) -> None:
    if not _VALID_NAME.match(name or ''):
        raise ParseError(f"Invalid set name {name!r}")


class RepoSetEngine:
    """
    Persisted sets plus the set algebra.

    Computed sets are evaluated against the workspace repositories through
    the state provider every time they are referenced.

    Example:
        engine = RepoSetEngine(root, repos, GitStateProvider(root))
        ids = engine.resolve("@all - bad")
        engine.save("good", RepoSet(ids))
    """

    def __init__(
        self,
        root: Union[str, Path],
        repos: Sequence[Repo] = (),
        state_provider: Optional[RepoStateProvider] = None,
        directory: Optional[Union[str, Path]] = None,
        retain: int = DEFAULT_RETAIN,
        parallelism: int = 1,
    ):
        self.root = Path(root)
        directory = Path(directory or DEFAULT_DIRECTORY)
        self.directory = directory if directory.is_absolute() else self.root / directory
        self.repos = list(repos)
        self.state_provider = state_provider
        self.retain = max(1, int(retain))
        self.parallelism = max(1, int(parallelism))

    # Storage

    def _files(self) -> List[str]:
        if not self.directory.is_dir():
            return []
        return sorted(
            p.name for p in self.directory.iterdir()
            if p.is_file() and not p.name.startswith('.')
        )

    def names(self) -> List[str]:
        """Base names of all persisted sets."""
        bases = set()
        for name in self._files():
            match = _SNAPSHOT.match(name)
            bases.add(match.group('base') if match else name)
        return sorted(bases)

    def snapshots(self, name: str) -> List[Tuple[_date, Path]]:
        """Dated snapshots of ``name``, newest first."""
        found = []
        for filename in self._files():
            match = _SNAPSHOT.match(filename)
            if not match or match.group('base') != name:
                continue
            try:
                day = _date.fromisoformat(match.group('date'))
            except ValueError:
                logger.debug(f"Ignoring snapshot with invalid date: {filename}")
                continue
            found.append((day, self.directory / filename))
        return sorted(found, reverse=True)

    def suggestions(self, name: str, threshold: int = 60, limit: int = 3) -> List[str]:
        """Known set names similar to ``name``."""
        choices = set(self.names()) | set(self._files()) | {f"@{c}" for c in COMPUTED_SETS}
        scored = [
            (fuzz.ratio(name.lower(), choice.lower()), choice)
            for choice in choices
        ]
        scored = [s for s in scored if s[0] >= threshold]
        scored.sort(key=lambda s: (-s[0], s[1]))
        return [choice for _, choice in scored[:limit]]

    def load(self, name: str, expression: Optional[str] = None) -> RepoSet:
        """
        Load a persisted set: the base file, or its newest snapshot when
        there is no base file. A full snapshot name loads that snapshot.

        Raises:
            UnknownSetError: no such set
        """
        _check_name(name)
        path = self.directory / name
        if not path.is_file():
            snapshots = self.snapshots(name)
            if not snapshots:
                raise UnknownSetError(name, expression, self.suggestions(name))
            path = snapshots[0][1]

        logger.debug(f"Loading set '{name}' from {path}")
        with open(path, 'r', encoding='utf-8') as f:
            return RepoSet.parse(f.read())

    def save(
        self,
        name: str,
        repo_set: Union[RepoSet, Iterable[str]],
        primary: bool = False,
        hint: Optional[str] = None,
        today: Optional[_date] = None,
    ) -> Path:
        """
        Write a set.

        With ``primary`` the undated base file is written. Otherwise today's
        snapshot is written (replacing an earlier one from today) and the
        oldest snapshots beyond the retention limit are deleted.

        Returns:
            Path of the written file
        """
        _check_name(name)
        if not isinstance(repo_set, RepoSet):
            repo_set = RepoSet(repo_set)

        day = (today or _date.today()).isoformat()
        path = self.directory / (name if primary else f"{name}-{day}")

        if repo_set.lines is None and path.is_file():
            with open(path, 'r', encoding='utf-8') as f:
                previous = RepoSet.parse(f.read())
            repo_set = RepoSet(repo_set.members, lines=previous.lines)

        text = repo_set.render(hint=hint or repo_set.hint, date=day)
        write_atomic(path, text.encode('utf-8'))
        logger.debug(f"Saved {len(repo_set)} repos to {path}")

        if not primary:
            self.prune(name)
        return path

    def prune(self, name: str) -> List[Path]:
        """Delete all but the newest ``retain`` snapshots of ``name``."""
        removed = []
        for _, path in self.snapshots(name)[self.retain:]:
            path.unlink()
            removed.append(path)
            logger.debug(f"Pruned snapshot {path.name}")
        return removed

    # Computed sets

    def computed(self, name: str) -> FrozenSet[str]:
        """
        Evaluate a computed set now.

        Raises:
            UnknownSetError: not a computed set name
        """
        if name not in COMPUTED_SETS:
            raise UnknownSetError(f"@{name}", suggestions=self.suggestions(f"@{name}"))

        predicate_name = COMPUTED_SETS[name]
        if predicate_name is None:
            return frozenset(repo.path for repo in self.repos)
        if self.state_provider is None:
            raise UnknownSetError(f"@{name}")

        predicate = getattr(self.state_provider, predicate_name)
        with ThreadPoolExecutor(max_workers=self.parallelism) as executor:
            answers = list(executor.map(predicate, self.repos))

        return frozenset(repo.path for repo, hit in zip(self.repos, answers) if hit)

    # Algebra

    def resolve(self, expression: str) -> FrozenSet[str]:
        """
        Evaluate a set expression to repository identifiers.

        Every referenced name is checked before any computed set is
        evaluated, so an error never leaves a partial result.

        Raises:
            ParseError: malformed expression
            UnknownSetError: a referenced set does not exist
        """
        node = set_query.parse(expression)
        named, computed = set_query.references(node)

        for name in computed:
            if name not in COMPUTED_SETS:
                raise UnknownSetError(f"@{name}", expression, self.suggestions(f"@{name}"))
            if COMPUTED_SETS[name] is not None and self.state_provider is None:
                raise UnknownSetError(f"@{name}", expression)

        persisted = {name: self.load(name, expression).ids() for name in dict.fromkeys(named)}
        live = {name: self.computed(name) for name in dict.fromkeys(computed)}

        def lookup(leaf):
            if isinstance(leaf, set_query.ComputedSet):
                return live[leaf.name]
            return persisted[leaf.name]

        result = set_query.evaluate(node, lookup)
        logger.debug(f"'{expression}' resolved to {len(result)} repos")
        return result

    def resolve_repos(self, expression: str) -> List[Repo]:
        """Workspace repositories selected by ``expression``, in workspace order."""
        ids = self.resolve(expression)
        known = {repo.path for repo in self.repos}
        for missing in sorted(ids - known):
            logger.warning(f"Set member '{missing}' is not a repository in this workspace")
        return [repo for repo in self.repos if repo.path in ids]
