"""
Domain layer for repokeep.

Contains pure domain objects with no I/O or side effects:
- Repo: A managed repository in the workspace
- Change: Proposed new content for one file, with its baseline fingerprint
- ResolvedVersion: The canonical result of a version specification

These objects are immutable and provide to_dict() for JSON output.
"""

from .repository import Repo, RepoSource
from .change import Change, ApplyOutcome, ApplyReport, OutcomeStatus, fingerprint
from .version import ResolvedVersion, SemanticVersion, Date, Name, Channel

__all__ = [
    'Repo',
    'RepoSource',
    'Change',
    'ApplyOutcome',
    'ApplyReport',
    'OutcomeStatus',
    'fingerprint',
    'ResolvedVersion',
    'SemanticVersion',
    'Date',
    'Name',
    'Channel',
]
