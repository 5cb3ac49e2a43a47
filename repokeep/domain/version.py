"""
Resolved version value objects for repokeep.

A ResolvedVersion is what a wobbly version specification evaluates to:
a core (semantic version, naive date or bare name), zero or more
pre-release channels, and optional dot-appended parts.

Examples:
    1.2.3            -> SemanticVersion(1, 2, 3)
    1.2.3-pre1       -> SemanticVersion(1, 2, 3), channels=(pre/1,)
    2026-10-18-rc2   -> Date(2026, 10, 18), channels=(rc/2,)
    nightly1         -> Date(<today>), channels=(nightly/1,)
    1.2.3-beta.fc39  -> SemanticVersion(1, 2, 3), channels=(beta,), append=("fc39",)
"""

from dataclasses import dataclass
from datetime import date as _date
from typing import Any, Dict, Optional, Tuple, Union

# The base year. Dated versions cannot predate it.
BASE_YEAR = 2000
LAST_YEAR = 2255


@dataclass(frozen=True)
class SemanticVersion:
    """A ``major.minor[.patch]`` version; ``original`` keeps the matched text."""
    major: int
    minor: int
    patch: Optional[int] = None
    original: str = ""

    def sort_key(self) -> Tuple[int, ...]:
        return (self.major, self.minor, self.patch or 0)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {'major': self.major, 'minor': self.minor}
        if self.patch is not None:
            result['patch'] = self.patch
        return result

    def __str__(self) -> str:
        if self.original:
            return self.original
        if self.patch is None:
            return f"{self.major}.{self.minor}"
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class Date:
    """A validated naive calendar date."""
    year: int
    month: int
    day: int

    def __post_init__(self):
        # Raises ValueError for impossible dates such as 2023-02-30
        _date(self.year, self.month, self.day)
        if not BASE_YEAR <= self.year < LAST_YEAR:
            raise ValueError(
                f"Year must be within {BASE_YEAR}..{LAST_YEAR}, but was {self.year}"
            )

    @classmethod
    def from_date(cls, value: _date) -> 'Date':
        return cls(value.year, value.month, value.day)

    @classmethod
    def parse(cls, text: str) -> 'Date':
        """Parse ``YYYY-MM-DD``; raises ValueError otherwise."""
        parts = text.strip().split('-')
        if len(parts) != 3 or not all(p.isdigit() for p in parts):
            raise ValueError(f"Not a date: {text!r}")
        return cls(int(parts[0]), int(parts[1]), int(parts[2]))

    def isoformat(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"

    def sort_key(self) -> Tuple[int, ...]:
        return (self.year, self.month, self.day)

    def to_dict(self) -> Dict[str, Any]:
        return {'year': self.year, 'month': self.month, 'day': self.day}

    def __str__(self) -> str:
        return f"{self.year}.{self.month}.{self.day}"


@dataclass(frozen=True)
class Channel:
    """
    A pre-release label such as ``nightly``, ``pre1`` or ``gitffcc11``.

    Trailing digits directly appended to an alphabetic name are the
    explicit ordinal (``pre``); ``git`` takes a hexadecimal hash tail
    instead. Any other alphanumeric segment is kept as a literal tag.
    """
    name: str
    pre: Optional[int] = None
    hash: Optional[str] = None

    def sort_key(self) -> Tuple[str, int, str]:
        return (self.name, self.pre if self.pre is not None else -1, self.hash or "")

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {'name': self.name}
        if self.pre is not None:
            result['pre'] = self.pre
        if self.hash is not None:
            result['hash'] = self.hash
        return result

    def __str__(self) -> str:
        if self.hash is not None:
            return f"{self.name}{self.hash}"
        if self.pre is not None:
            return f"{self.name}{self.pre}"
        return self.name


@dataclass(frozen=True)
class Name:
    """A bare channel name used as a version when no date is available."""
    name: str
    pre: Optional[int] = None

    def sort_key(self) -> Tuple[str, int]:
        return (self.name, self.pre if self.pre is not None else -1)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {'name': self.name}
        if self.pre is not None:
            result['pre'] = self.pre
        return result

    def __str__(self) -> str:
        return self.name if self.pre is None else f"{self.name}{self.pre}"


Core = Union[SemanticVersion, Date, Name]

_CORE_RANK = {Name: 0, Date: 1, SemanticVersion: 2}


@dataclass(frozen=True, eq=False)
class ResolvedVersion:
    """
    The canonical result of resolving a version specification.

    Immutable. Target-specific renderings (rpm, deb, msi, pep440) are
    computed by ``repokeep.version_formats.coerce`` and never stored here.
    Equality and ordering both go by ``sort_key``; the matched text and
    the tag prefix do not take part, so ``v1.2.3`` equals ``1.2.3``.
    """
    core: Core
    channels: Tuple[Channel, ...] = ()
    append: Tuple[str, ...] = ()
    prefix: Optional[str] = None
    text: str = ""

    @property
    def kind(self) -> str:
        if isinstance(self.core, SemanticVersion):
            return "version"
        if isinstance(self.core, Date):
            return "date"
        return "name"

    @property
    def prerelease(self) -> Optional[int]:
        """Explicit pre-release ordinal of the first channel, if any."""
        if self.channels:
            return self.channels[0].pre
        if isinstance(self.core, Name):
            return self.core.pre
        return None

    @property
    def is_pre(self) -> bool:
        """Anything beyond a plain semantic version or dated release."""
        return bool(self.channels) or isinstance(self.core, Name)

    def sort_key(self) -> tuple:
        core_key = (_CORE_RANK[type(self.core)], self.core.sort_key())
        if self.channels:
            pre_key: tuple = (0, tuple(c.sort_key() for c in self.channels))
        else:
            pre_key = (1, ())
        return (core_key, pre_key, self.append)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResolvedVersion):
            return NotImplemented
        return self.sort_key() == other.sort_key()

    def __hash__(self) -> int:
        return hash(self.sort_key())

    def __lt__(self, other: 'ResolvedVersion') -> bool:
        if not isinstance(other, ResolvedVersion):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def __le__(self, other: 'ResolvedVersion') -> bool:
        if not isinstance(other, ResolvedVersion):
            return NotImplemented
        return self.sort_key() <= other.sort_key()

    def __gt__(self, other: 'ResolvedVersion') -> bool:
        if not isinstance(other, ResolvedVersion):
            return NotImplemented
        return self.sort_key() > other.sort_key()

    def __ge__(self, other: 'ResolvedVersion') -> bool:
        if not isinstance(other, ResolvedVersion):
            return NotImplemented
        return self.sort_key() >= other.sort_key()

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            'kind': self.kind,
            self.kind: self.core.to_dict(),
            'text': self.text,
            'display': str(self),
            'pre': self.is_pre,
        }
        if self.prefix:
            result['prefix'] = self.prefix
        if self.channels:
            result['channels'] = [c.to_dict() for c in self.channels]
        if self.append:
            result['append'] = list(self.append)
        return result

    def __str__(self) -> str:
        out = self.prefix or ""
        out += str(self.core)
        for channel in self.channels:
            out += f"-{channel}"
        for part in self.append:
            out += f".{part}"
        return out
