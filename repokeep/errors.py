"""
Error taxonomy for repokeep.

Every error carries the context needed to act on it (expression text,
repository, file path) and maps to an exit code through CommandError.

Resolution errors (ParseError, EmptyResolution, UnknownSetError) abort the
enclosing resolution. Apply-time errors (StaleChange, IoError) are collected
into an ApplyReport instead of being raised.
"""

from typing import List, Optional, Sequence

from .exit_codes import (
    CommandError,
    CONFLICT,
    DATA_ERROR,
    GENERAL_ERROR,
    LOCKED,
    PARSE_ERROR,
    UNKNOWN_SET,
    USAGE_ERROR,
)


class RepokeepError(CommandError):
    """Base class for all repokeep errors."""
    exit_code_default = GENERAL_ERROR

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message, exit_code if exit_code is not None else self.exit_code_default)


class ParseError(RepokeepError):
    """Malformed version or set expression."""
    exit_code_default = PARSE_ERROR

    def __init__(self, message: str, expression: Optional[str] = None, position: Optional[int] = None):
        if expression is not None:
            where = f" at offset {position}" if position is not None else ""
            message = f"{message}{where} in {expression!r}"
        super().__init__(message)
        self.expression = expression
        self.position = position


class EmptyResolution(RepokeepError):
    """Every candidate of a version specification evaluated to empty."""
    exit_code_default = PARSE_ERROR

    def __init__(self, expression: str):
        super().__init__(f"No candidate produced a version in {expression!r}")
        self.expression = expression


class VersionFormatError(RepokeepError):
    """A resolved version cannot be expressed in the requested target format."""
    exit_code_default = DATA_ERROR

    def __init__(self, message: str, target: Optional[str] = None):
        super().__init__(message)
        self.target = target


class UnknownSetError(RepokeepError):
    """A named set token could not be found."""
    exit_code_default = UNKNOWN_SET

    def __init__(self, name: str, expression: Optional[str] = None, suggestions: Sequence[str] = ()):
        message = f"Unknown set: {name}"
        if expression is not None and expression.strip() != name:
            message += f" (in {expression!r})"
        if suggestions:
            message += f"; did you mean: {', '.join(suggestions)}?"
        super().__init__(message)
        self.name = name
        self.expression = expression
        self.suggestions: List[str] = list(suggestions)


class ConflictError(RepokeepError):
    """Two producers disagree about the current content of a file."""
    exit_code_default = CONFLICT

    def __init__(self, repo: str, path: str, staged_hash: Optional[str], proposed_hash: Optional[str]):
        super().__init__(
            f"{repo}/{path}: conflicting proposals "
            f"(staged baseline {staged_hash or 'missing'}, proposed baseline {proposed_hash or 'missing'})"
        )
        self.repo = repo
        self.path = path
        self.staged_hash = staged_hash
        self.proposed_hash = proposed_hash


class StaleChange(RepokeepError):
    """The file changed on disk after the change was computed."""

    def __init__(self, repo: str, path: str, expected: Optional[str], actual: Optional[str]):
        super().__init__(
            f"{repo}/{path}: file changed since the edit was proposed "
            f"(expected {expected or 'missing'}, found {actual or 'missing'})"
        )
        self.repo = repo
        self.path = path
        self.expected = expected
        self.actual = actual


class IoError(RepokeepError):
    """Writing one file failed during apply."""

    def __init__(self, repo: str, path: str, cause: BaseException):
        super().__init__(f"{repo}/{path}: {cause}")
        self.repo = repo
        self.path = path
        self.cause = cause


class CorruptStoreError(RepokeepError):
    """A persisted staging artifact is unreadable or has an unknown schema."""
    exit_code_default = DATA_ERROR

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class SerializationError(RepokeepError):
    """Persisting the staging store failed."""
    exit_code_default = DATA_ERROR

    def __init__(self, path: str, cause: BaseException):
        super().__init__(f"{path}: could not persist changes: {cause}")
        self.path = path
        self.cause = cause


class UnknownProducerError(RepokeepError):
    """A producer name that is not registered."""
    exit_code_default = USAGE_ERROR

    def __init__(self, name: str, known: Sequence[str] = ()):
        message = f"Unknown producer: {name}"
        if known:
            message += f" (available: {', '.join(known)})"
        super().__init__(message)
        self.name = name


class WorkspaceLockedError(RepokeepError):
    """Another invocation is operating on the same workspace."""
    exit_code_default = LOCKED

    def __init__(self, path: str, owner: Optional[int] = None):
        held = f" (held by pid {owner})" if owner else ""
        super().__init__(
            f"Workspace is locked: {path}{held}; delete the file if no repokeep process is running"
        )
        self.path = path
        self.owner = owner
