"""
Change domain objects for repokeep.

A Change is a proposed replacement of one file inside one repository.
It records the fingerprint of the file as it was read when the change was
computed, so that applying it later can detect edits made in between.
"""

from dataclasses import dataclass, field
from enum import Enum
import hashlib
from typing import Any, Dict, List, Optional, Tuple, Union

from ..errors import RepokeepError

HASH_PREFIX = "sha256:"


def fingerprint(content: Union[bytes, str, None]) -> Optional[str]:
    """
    Content fingerprint in ``sha256:<hex>`` form.

    A missing file (None) has no fingerprint.
    """
    if content is None:
        return None
    if isinstance(content, str):
        content = content.encode('utf-8')
    return HASH_PREFIX + hashlib.sha256(content).hexdigest()


@dataclass(frozen=True)
class Change:
    """
    Proposed new content for exactly one file.

    Attributes:
        repo: Repository identifier (workspace-relative path)
        path: File path relative to the repository
        baseline_hash: Fingerprint of the file when the change was computed,
            None if the file did not exist
        new_content: Full replacement content
        producer: Name of the producer that proposed it
        reason: Human-readable description
    """
    repo: str
    path: str
    baseline_hash: Optional[str]
    new_content: str
    producer: str = field(default="", compare=False)
    reason: str = field(default="", compare=False)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.repo, self.path)

    @property
    def new_hash(self) -> Optional[str]:
        return fingerprint(self.new_content)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'repo': self.repo,
            'path': self.path,
            'baseline_hash': self.baseline_hash,
            'new_content': self.new_content,
            'producer': self.producer,
            'reason': self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Change':
        """Rebuild a Change; raises KeyError/TypeError on malformed input."""
        baseline = data['baseline_hash']
        if baseline is not None and not isinstance(baseline, str):
            raise TypeError(f"baseline_hash must be a string, got {type(baseline).__name__}")
        content = data['new_content']
        if not isinstance(content, str):
            raise TypeError(f"new_content must be a string, got {type(content).__name__}")
        return cls(
            repo=str(data['repo']),
            path=str(data['path']),
            baseline_hash=baseline,
            new_content=content,
            producer=str(data.get('producer', '')),
            reason=str(data.get('reason', '')),
        )

    def __str__(self) -> str:
        return f"{self.repo}/{self.path}"


class OutcomeStatus(Enum):
    """What happened to one staged change during apply."""
    APPLIED = "applied"
    STALE = "stale"
    FAILED = "failed"
    PENDING = "pending"


@dataclass
class ApplyOutcome:
    """Result of applying a single change."""
    change: Change
    status: OutcomeStatus
    error: Optional[RepokeepError] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'repo': self.change.repo,
            'path': self.change.path,
            'status': self.status.value,
        }
        if self.change.reason:
            result['reason'] = self.change.reason
        if self.error is not None:
            result['error'] = str(self.error)
        return result


@dataclass
class ApplyReport:
    """
    Summary of one apply pass.

    Apply never raises for per-file problems; stale and failed entries are
    listed here and stay in the store so the pass can be re-run.
    """
    saved: bool = True
    outcomes: List[ApplyOutcome] = field(default_factory=list)

    def add(self, outcome: ApplyOutcome) -> None:
        self.outcomes.append(outcome)

    def _with(self, status: OutcomeStatus) -> List[ApplyOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def applied(self) -> List[ApplyOutcome]:
        return self._with(OutcomeStatus.APPLIED)

    @property
    def stale(self) -> List[ApplyOutcome]:
        return self._with(OutcomeStatus.STALE)

    @property
    def failed(self) -> List[ApplyOutcome]:
        return self._with(OutcomeStatus.FAILED)

    @property
    def pending(self) -> List[ApplyOutcome]:
        return self._with(OutcomeStatus.PENDING)

    @property
    def success(self) -> bool:
        """True if nothing was stale or failed."""
        return not self.stale and not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'summary',
            'saved': self.saved,
            'applied': len(self.applied),
            'stale': len(self.stale),
            'failed': len(self.failed),
            'pending': len(self.pending),
            'details': [o.to_dict() for o in self.outcomes],
        }
