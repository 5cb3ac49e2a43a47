"""
repokeep - Maintenance across many repositories at once.

Three engines make up the core:

    Version resolution:
        from repokeep.version_spec import resolve
        version = resolve("%tag || %date-nightly", {"date": "2026-10-18"}, {})
        print(version)                      # 2026.10.18-nightly

    Change staging:
        engine = ChangeStagingEngine(root)
        engine.propose(change)
        report = engine.apply()

    Repository sets:
        engine = RepoSetEngine(root, repos, GitStateProvider(root))
        ids = engine.resolve("@all - bad")

Workspace ties them together for the command line.
"""

__version__ = "0.3.0"

# Domain objects
from .domain import (
    Repo,
    RepoSource,
    Change,
    ApplyOutcome,
    ApplyReport,
    OutcomeStatus,
    ResolvedVersion,
    SemanticVersion,
    Date,
    Name,
    Channel,
)

# Engines
from .services import (
    ChangeStagingEngine,
    RepoSetEngine,
    GitStateProvider,
)
from .version_spec import VersionResolver
from .workspace import Workspace

# Configuration
from .config import load_config, save_config

__all__ = [
    "__version__",
    # Domain objects
    "Repo",
    "RepoSource",
    "Change",
    "ApplyOutcome",
    "ApplyReport",
    "OutcomeStatus",
    "ResolvedVersion",
    "SemanticVersion",
    "Date",
    "Name",
    "Channel",
    # Engines
    "ChangeStagingEngine",
    "RepoSetEngine",
    "GitStateProvider",
    "VersionResolver",
    "Workspace",
    # Configuration
    "load_config",
    "save_config",
]
