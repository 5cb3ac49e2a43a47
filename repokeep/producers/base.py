"""
Change producer interface.

A producer inspects one repository and proposes zero or more Changes plus
human-readable diagnostics. Producers never write files; the staging
engine decides when and whether their proposals reach the disk.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..domain.change import Change, fingerprint
from ..domain.repository import Repo
from ..domain.version import ResolvedVersion
from ..infra.file_store import read_bytes


@dataclass
class ProducerContext:
    """
    Inputs shared by all producers of one run.

    Attributes:
        root: Workspace root
        version: Version to set, for version bump producers
        bump: 'major', 'minor' or 'patch' when no explicit version is given
        variables: Resolved variable bindings
    """
    root: Path
    version: Optional[ResolvedVersion] = None
    bump: Optional[str] = None
    variables: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ProducerResult:
    changes: List[Change] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)
    #: Files the producer could not read or parse; the repository counts as failed
    errors: List[str] = field(default_factory=list)

    def extend(self, other: 'ProducerResult') -> None:
        self.changes.extend(other.changes)
        self.diagnostics.extend(other.diagnostics)
        self.errors.extend(other.errors)


class ChangeProducer(ABC):
    """Base class for registered producers."""

    #: Registry name, e.g. "python-version"
    name: str = ""

    @abstractmethod
    def produce(self, repo: Repo, context: ProducerContext) -> ProducerResult:
        ...

    def read(self, repo: Repo, context: ProducerContext, path: str) -> Tuple[Optional[bytes], Optional[str]]:
        """
        Read a repository file.

        Returns:
            (raw bytes, decoded text); (None, None) if the file does not exist

        Raises:
            UnicodeDecodeError: the file is not UTF-8
        """
        raw = read_bytes(repo.to_path(context.root) / path)
        if raw is None:
            return None, None
        return raw, raw.decode('utf-8')

    def change(self, repo: Repo, path: str, baseline: Optional[bytes], content: str, reason: str) -> Change:
        return Change(
            repo=repo.path,
            path=path,
            baseline_hash=fingerprint(baseline),
            new_content=content,
            producer=self.name,
            reason=reason,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
