"""
Manifest version bump producers.

Handles version fields in:
- Python (PEP 440): pyproject.toml, setup.py, __version__
- Node.js (semver): package.json
- Rust (semver): Cargo.toml

Edits are line-preserving substitutions of the version value only, so
comments, ordering and formatting of the manifests survive. When a
repository keeps the version in several files, every file holding the
current version is updated and files that disagree are reported.
"""

import json
import logging
import re
from abc import abstractmethod
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

import toml
from packaging.version import InvalidVersion, Version

from ..domain.repository import Repo
from ..errors import VersionFormatError
from ..version_formats import coerce
from .base import ChangeProducer, ProducerContext, ProducerResult

logger = logging.getLogger(__name__)

BUMP_PARTS = ('major', 'minor', 'patch')

_TABLE_HEADER = re.compile(r'^\s*(\[\[?)\s*([^\[\]]+?)\s*\]\]?\s*(?:#.*)?$')


class VersionBumper:
    """Bump semantic versions."""

    @staticmethod
    def bump_major(version_str: str) -> str:
        """Bump major version (X.0.0)."""
        try:
            v = Version(version_str)
            return f"{v.major + 1}.0.0"
        except InvalidVersion:
            # Fallback to string manipulation
            parts = version_str.split('.')
            parts[0] = str(int(parts[0]) + 1)
            parts[1:] = ['0'] * (len(parts) - 1)
            return '.'.join(parts)

    @staticmethod
    def bump_minor(version_str: str) -> str:
        """Bump minor version (x.Y.0)."""
        try:
            v = Version(version_str)
            return f"{v.major}.{v.minor + 1}.0"
        except InvalidVersion:
            parts = version_str.split('.')
            if len(parts) >= 2:
                parts[1] = str(int(parts[1]) + 1)
                parts[2:] = ['0'] * (len(parts) - 2)
            return '.'.join(parts)

    @staticmethod
    def bump_patch(version_str: str) -> str:
        """Bump patch version (x.y.Z)."""
        try:
            v = Version(version_str)
            return f"{v.major}.{v.minor}.{v.micro + 1}"
        except InvalidVersion:
            parts = version_str.split('.')
            if len(parts) >= 3:
                parts[2] = str(int(parts[2]) + 1)
            elif len(parts) == 2:
                parts.append('1')
            return '.'.join(parts)

    @classmethod
    def bump(cls, version_str: str, part: str) -> str:
        """
        Raises:
            ValueError: unknown part, or a version with non-numeric components
        """
        if part == 'major':
            return cls.bump_major(version_str)
        if part == 'minor':
            return cls.bump_minor(version_str)
        if part == 'patch':
            return cls.bump_patch(version_str)
        raise ValueError(f"Unknown version part: {part}")


def replace_table_value(
    text: str,
    tables: Sequence[str],
    key: str,
    value: str,
    expected: Optional[str] = None,
) -> Tuple[str, Optional[str]]:
    """
    Replace a quoted string value inside the first matching TOML table.

    Only the value characters change; everything else on every line is
    kept.

    Returns:
        (new text, previous value); previous value is None if not found
    """
    pattern = re.compile(rf'^(\s*{re.escape(key)}\s*=\s*)(["\'])([^"\']*)\2')
    lines = text.splitlines(keepends=True)
    current = ''

    for i, line in enumerate(lines):
        header = _TABLE_HEADER.match(line)
        if header:
            current = header.group(2) if header.group(1) == '[' else f"[[{header.group(2)}]]"
            continue
        if current not in tables:
            continue
        match = pattern.match(line)
        if match and (expected is None or match.group(3) == expected):
            lines[i] = line[:match.start(3)] + value + line[match.end(3):]
            return ''.join(lines), match.group(3)

    return text, None


def table_value(data: Any, table: str, key: str) -> Any:
    """
    ``key`` in the dotted ``table`` of parsed TOML, or None when the table
    or key is absent.

    Raises:
        ValueError: a name along ``table`` holds a plain value
    """
    for part in table.split('.'):
        data = data.get(part)
        if data is None:
            return None
        if not isinstance(data, dict):
            raise ValueError(f"'{table}' is not a table")
    return data.get(key)


def replace_assignment(text: str, name: str, value: str, expected: str) -> str:
    """Replace ``name = "expected"`` assignments (setup.py, __init__.py)."""
    pattern = re.compile(rf'(\b{re.escape(name)}\s*=\s*)(["\']){re.escape(expected)}\2')
    return pattern.sub(lambda m: f"{m.group(1)}{m.group(2)}{value}{m.group(2)}", text)


class ManifestVersionProducer(ChangeProducer):
    """
    Propose new version values for the manifests of one ecosystem.

    Subclasses name the files, locate the version in each, and rewrite it.
    """

    #: Target format the resolved version is coerced to
    target = "semver"

    @abstractmethod
    def files(self, repo_dir: Path) -> List[str]:
        ...

    @abstractmethod
    def locate(self, path: str, text: str) -> Optional[str]:
        """
        Current version declared in ``text``, or None.

        Raises:
            ValueError: the manifest is malformed
        """

    @abstractmethod
    def rewrite(self, path: str, text: str, current: str, new: str) -> str:
        ...

    def new_version(self, current: str, context: ProducerContext) -> str:
        """
        Raises:
            VersionFormatError: the version cannot be expressed for this
                ecosystem
            ValueError: nothing to bump to
        """
        if context.version is not None:
            return coerce(context.version, self.target)
        if context.bump:
            return VersionBumper.bump(current, context.bump)
        raise ValueError("no version or bump part given")

    def produce(self, repo: Repo, context: ProducerContext) -> ProducerResult:
        result = ProducerResult()
        found = []

        for path in self.files(repo.to_path(context.root)):
            try:
                raw, text = self.read(repo, context, path)
            except (OSError, UnicodeDecodeError) as e:
                result.errors.append(f"{path}: unreadable: {e}")
                continue
            if raw is None:
                continue
            try:
                declared = self.locate(path, text)
            except (toml.TomlDecodeError, ValueError) as e:
                result.errors.append(f"{path}: cannot parse: {e}")
                continue
            if declared is not None:
                found.append((path, raw, text, declared))

        if not found:
            return result

        current = found[0][3]
        try:
            new = self.new_version(current, context)
        except (VersionFormatError, ValueError) as e:
            result.diagnostics.append(f"{found[0][0]}: {e}")
            return result

        for path, raw, text, declared in found:
            if declared != current:
                result.diagnostics.append(
                    f"{path}: version {declared} does not match {current} in {found[0][0]}"
                )
                continue
            if declared == new:
                result.diagnostics.append(f"{path}: already at {new}")
                continue
            updated = self.rewrite(path, text, current, new)
            if updated == text:
                result.diagnostics.append(f"{path}: could not rewrite version field")
                continue
            result.changes.append(self.change(repo, path, raw, updated, f"{path}: {current} -> {new}"))

        logger.debug(f"{self.name} on {repo}: {len(result.changes)} changes")
        return result


class PythonVersionProducer(ManifestVersionProducer):
    """pyproject.toml ([project] or [tool.poetry]), setup.py and __version__."""
    name = "python-version"
    target = "pep440"

    _SETUP_VERSION = re.compile(r'\bversion\s*=\s*["\']([^"\']+)["\']')
    _DUNDER_VERSION = re.compile(r'\b__version__\s*=\s*["\']([^"\']+)["\']')

    def files(self, repo_dir: Path) -> List[str]:
        files = ["pyproject.toml", "setup.py"]
        for pattern in ("*/__init__.py", "src/*/__init__.py"):
            files.extend(sorted(p.relative_to(repo_dir).as_posix() for p in repo_dir.glob(pattern)))
        return files

    def locate(self, path: str, text: str) -> Optional[str]:
        if path == "pyproject.toml":
            data = toml.loads(text)
            version = table_value(data, 'project', 'version')
            if version is None:
                version = table_value(data, 'tool.poetry', 'version')
            return version if isinstance(version, str) else None

        pattern = self._SETUP_VERSION if path == "setup.py" else self._DUNDER_VERSION
        match = pattern.search(text)
        return match.group(1) if match else None

    def rewrite(self, path: str, text: str, current: str, new: str) -> str:
        if path == "pyproject.toml":
            return replace_table_value(text, ('project', 'tool.poetry'), 'version', new, current)[0]
        name = 'version' if path == "setup.py" else '__version__'
        return replace_assignment(text, name, new, current)


class NodeVersionProducer(ManifestVersionProducer):
    """package.json"""
    name = "node-version"
    target = "semver"

    _VERSION = re.compile(r'("version"\s*:\s*")((?:[^"\\]|\\.)*)(")')

    def files(self, repo_dir: Path) -> List[str]:
        return ["package.json"]

    def locate(self, path: str, text: str) -> Optional[str]:
        data = json.loads(text)
        version = data.get('version') if isinstance(data, dict) else None
        return version if isinstance(version, str) else None

    def rewrite(self, path: str, text: str, current: str, new: str) -> str:
        for match in self._VERSION.finditer(text):
            if match.group(2) != current:
                continue
            updated = text[:match.start(2)] + new + text[match.end(2):]
            # Only accept the edit if it hit the top-level field
            if json.loads(updated).get('version') == new:
                return updated
        return text


class RustVersionProducer(ManifestVersionProducer):
    """Cargo.toml ([package] or [workspace.package])"""
    name = "rust-version"
    target = "semver"

    def files(self, repo_dir: Path) -> List[str]:
        return ["Cargo.toml"]

    def locate(self, path: str, text: str) -> Optional[str]:
        data = toml.loads(text)
        version = table_value(data, 'package', 'version')
        if version is None:
            version = table_value(data, 'workspace.package', 'version')
        # `version.workspace = true` inherits and has nothing to rewrite
        return version if isinstance(version, str) else None

    def rewrite(self, path: str, text: str, current: str, new: str) -> str:
        return replace_table_value(text, ('package', 'workspace.package'), 'version', new, current)[0]
