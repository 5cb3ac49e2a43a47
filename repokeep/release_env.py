"""
Release environment: the bindings a version specification is evaluated
against.

The resolver itself is pure. This module gathers the built-in variables
(``date``, ``tag``, ``branch``) from the GitHub Actions environment or the
repository's git state, parses ``--define key=value`` pairs, and builds the
fallback release used when nothing else yields a version.
"""

from dataclasses import dataclass, replace
from datetime import date as _date
import logging
import os
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from .domain.version import Date, ResolvedVersion
from .errors import EmptyResolution, ParseError
from .infra.git_client import GitClient
from . import version_spec

logger = logging.getLogger(__name__)

TAG_REF = "refs/tags/"
HEAD_REF = "refs/heads/"

# Events that carry no release information of their own
_PASSIVE_EVENTS = ("schedule", "workflow_dispatch")


@dataclass(frozen=True)
class ReleaseEnv:
    """GitHub Actions variables relevant for releases."""
    github_event_name: Optional[str] = None
    github_ref: Optional[str] = None

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> 'ReleaseEnv':
        environ = os.environ if environ is None else environ
        return cls(
            github_event_name=environ.get("GITHUB_EVENT_NAME") or None,
            github_ref=environ.get("GITHUB_REF") or None,
        )

    def pushed_ref(self) -> Optional[tuple]:
        """
        The pushed tag or branch.

        Returns:
            ('tag', name) or ('branch', name), None if this is not a push
        """
        if self.github_event_name != "push" or not self.github_ref:
            if self.github_ref and not self.github_event_name:
                logger.warning(
                    f"GITHUB_REF='{self.github_ref}' without GITHUB_EVENT_NAME='push' does nothing"
                )
            elif self.github_event_name and self.github_event_name not in ("push", *_PASSIVE_EVENTS):
                logger.warning(f"Unsupported GITHUB_EVENT_NAME='{self.github_event_name}'")
            return None

        if self.github_ref.startswith(TAG_REF):
            return ('tag', self.github_ref[len(TAG_REF):])
        if self.github_ref.startswith(HEAD_REF):
            return ('branch', self.github_ref[len(HEAD_REF):])

        logger.warning(f"Unsupported GITHUB_REF='{self.github_ref}'")
        return None


def parse_defines(pairs: Iterable[str]) -> Dict[str, Optional[str]]:
    """
    Parse ``key=value`` definitions.

    An empty value leaves the variable undefined (None).

    Raises:
        ParseError: a pair without ``=`` or with an empty key
    """
    defines: Dict[str, Optional[str]] = {}
    for pair in pairs:
        key, sep, value = pair.partition('=')
        key = key.strip()
        if not sep or not key:
            raise ParseError(f"Expected key=value, got {pair!r}")
        defines[key] = value if value.strip() else None
    return defines


def builtin_variables(
    repo_path: Optional[str] = None,
    release_env: Optional[ReleaseEnv] = None,
    git: Optional[GitClient] = None,
    today: Optional[_date] = None,
) -> Dict[str, Optional[str]]:
    """
    Built-in bindings: ``date``, ``tag`` and ``branch``.

    A pushed GitHub ref takes precedence over local git state.
    """
    today = today or _date.today()
    variables: Dict[str, Optional[str]] = {
        'date': Date.from_date(today).isoformat(),
        'tag': None,
        'branch': None,
    }

    pushed = (release_env or ReleaseEnv()).pushed_ref()
    if pushed:
        kind, name = pushed
        variables[kind] = name

    if repo_path is not None:
        git = git or GitClient()
        if variables['tag'] is None:
            variables['tag'] = git.exact_tag(repo_path)
        if variables['branch'] is None:
            variables['branch'] = git.current_branch(repo_path)

    return variables


def merge_variables(*layers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Later layers win, but an undefined value never hides an earlier one."""
    merged: Dict[str, Any] = {}
    for layer in layers:
        for key, value in (layer or {}).items():
            if value is None or value == '':
                merged.setdefault(key, None)
            else:
                merged[key] = value
    return merged


def resolve_release(
    spec: Optional[str],
    variables: Optional[Mapping[str, Any]] = None,
    environment: Optional[Mapping[str, Any]] = None,
    prefixes: Sequence[str] = (),
    append: Sequence[str] = (),
    release_env: Optional[ReleaseEnv] = None,
    github_release: bool = False,
    today: Optional[_date] = None,
    fallback: bool = True,
) -> ResolvedVersion:
    """
    Determine the release version the way CI needs it.

    Tries, in order: the specification, the pushed GitHub tag or branch
    (only with ``github_release``), and finally a plain dated release for
    today. ``append`` parts are added to whichever version wins.

    With ``fallback`` false there is no dated release: a specification
    whose candidates are all empty raises instead.

    Raises:
        ParseError: malformed specification or unclassifiable text
        EmptyResolution: nothing produced a version and ``fallback`` is off
    """
    resolver = version_spec.VersionResolver(prefixes)
    version = None

    if spec and spec.strip():
        try:
            version = resolver.resolve(spec, variables, environment)
        except EmptyResolution:
            if not fallback:
                raise
            logger.info(f"No candidate of '{spec}' produced a version")

    if version is None and github_release:
        pushed = (release_env or ReleaseEnv.from_environ()).pushed_ref()
        if pushed:
            version = resolver.resolve(pushed[1], variables, environment)

    if version is None and not fallback:
        raise EmptyResolution(spec or "")

    if version is None:
        logger.warning("Assuming dated release since no other release kind could be determined")
        day = Date.from_date(today or _date.today())
        version = ResolvedVersion(core=day, text=day.isoformat())

    if append:
        version = replace(version, append=version.append + tuple(a for a in append if a))

    return version
