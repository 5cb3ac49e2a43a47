"""
Target-specific renderings of a ResolvedVersion.

Coercion is a pure function applied where a version is consumed (a
manifest, a package name, an installer). The ResolvedVersion itself is
never modified.

Targets:
    text    display form, e.g. v1.2.3-beta1.fc39
    semver  strict MAJOR.MINOR.PATCH[-pre][+build]
    pep440  Python package version, normalized by ``packaging``
    rpm     pre-releases use ``~`` so they sort before the release
    deb     like rpm, restricted to Debian upstream-version characters
    msi     Windows Installer ProductVersion ``major.minor.build``
"""

import re

from packaging.version import InvalidVersion, Version

from .domain.version import BASE_YEAR, Date, Name, ResolvedVersion, SemanticVersion
from .errors import VersionFormatError

TARGETS = ('text', 'semver', 'pep440', 'rpm', 'deb', 'msi')

# Largest patch component that still fits into MSI's 16-bit build field
MSI_MAX_PATCH = 64
# Ordinal used for a final release, so it sorts after every pre-release
MSI_RELEASE_ORDINAL = 999

_SEMVER = re.compile(
    r'^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)'
    r'(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)'
    r'(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?'
    r'(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$'
)
_RPM = re.compile(r'^[A-Za-z0-9._+~^]+$')
_DEB = re.compile(r'^[0-9][A-Za-z0-9.+~]*$')

# Channel names PEP 440 understands as pre-releases
_PEP440_PRE = {
    'a': 'a', 'alpha': 'a',
    'b': 'b', 'beta': 'b',
    'c': 'rc', 'rc': 'rc', 'pre': 'rc', 'preview': 'rc',
}


def _release(version: ResolvedVersion, target: str) -> str:
    core = version.core
    if isinstance(core, SemanticVersion):
        return f"{core.major}.{core.minor}.{core.patch or 0}"
    if isinstance(core, Date):
        return f"{core.year}.{core.month}.{core.day}"
    raise VersionFormatError(
        f"Cannot express bare name '{core}' as a {target} version", target
    )


def to_semver(version: ResolvedVersion) -> str:
    text = _release(version, 'semver')
    if version.channels:
        text += '-' + '.'.join(str(c) for c in version.channels)
    if version.append:
        text += '+' + '.'.join(version.append)
    if not _SEMVER.match(text):
        raise VersionFormatError(f"'{text}' is not a valid semantic version", 'semver')
    return text


def to_pep440(version: ResolvedVersion) -> str:
    text = _release(version, 'pep440')
    local = []

    for index, channel in enumerate(version.channels):
        name = channel.name.lower()
        if index == 0 and name in _PEP440_PRE:
            text += f"{_PEP440_PRE[name]}{channel.pre or 0}"
        elif index == 0 and name in ('dev', 'post'):
            text += f".{name}{channel.pre or 0}"
        else:
            local.append(str(channel))

    local.extend(version.append)
    if local:
        text += '+' + '.'.join(local)

    try:
        return str(Version(text))
    except InvalidVersion as e:
        raise VersionFormatError(f"'{text}' is not a valid PEP 440 version: {e}", 'pep440')


def _tilde(version: ResolvedVersion, target: str) -> str:
    text = _release(version, target)
    if version.channels:
        text += '~' + '.'.join(str(c) for c in version.channels)
    for part in version.append:
        text += f".{part}"
    return text


def to_rpm(version: ResolvedVersion) -> str:
    text = _tilde(version, 'rpm')
    if not _RPM.match(text):
        raise VersionFormatError(f"'{text}' is not a valid rpm version", 'rpm')
    return text


def to_deb(version: ResolvedVersion) -> str:
    text = _tilde(version, 'deb')
    if not _DEB.match(text):
        raise VersionFormatError(f"'{text}' is not a valid deb upstream version", 'deb')
    return text


def to_msi(version: ResolvedVersion) -> str:
    """
    Compute an MSI-safe ProductVersion.

    The third field is ``patch * 1000 + ordinal`` (``day * 1000 + ordinal``
    for dates) and must fit in 16 bits, which limits the patch to 64 and
    the pre-release ordinal to 998.
    """
    core = version.core
    if isinstance(core, Name):
        raise VersionFormatError(f"Cannot compute MSI version from name '{core}'", 'msi')

    pre = version.prerelease
    if pre is None:
        pre = MSI_RELEASE_ORDINAL
    elif pre >= MSI_RELEASE_ORDINAL:
        raise VersionFormatError(
            f"Pre-release ordinal must be less than {MSI_RELEASE_ORDINAL}: {pre}", 'msi'
        )

    if isinstance(core, SemanticVersion):
        patch = core.patch or 0
        if patch > MSI_MAX_PATCH:
            raise VersionFormatError(
                f"Patch version must not be greater than {MSI_MAX_PATCH}: {patch}", 'msi'
            )
        return f"{core.major}.{core.minor}.{patch * 1000 + pre}"

    return f"{core.year - BASE_YEAR}.{core.month}.{core.day * 1000 + pre}"


_CONVERTERS = {
    'text': str,
    'semver': to_semver,
    'pep440': to_pep440,
    'rpm': to_rpm,
    'deb': to_deb,
    'msi': to_msi,
}


def coerce(version: ResolvedVersion, target: str = 'text') -> str:
    """
    Render ``version`` for ``target``.

    Raises:
        VersionFormatError: unknown target, or the version cannot be
            expressed in it
    """
    converter = _CONVERTERS.get(target.lower() if target else target)
    if converter is None:
        raise VersionFormatError(
            f"Unknown version format '{target}'; expected one of: {', '.join(TARGETS)}",
            target,
        )
    return converter(version)
