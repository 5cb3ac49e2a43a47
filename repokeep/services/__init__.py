"""
Service layer for repokeep.

Contains business logic that orchestrates domain objects and infrastructure:
- ChangeStagingEngine: Propose, persist and apply file changes
- RepoSetEngine: Persisted repository sets and the set algebra
- GitModulesDiscovery: Workspace repository discovery
- GitStateProvider: Live repository state for computed sets

Services are the primary API for commands to use.
They handle coordination between infrastructure and domain layers.
"""

from .staging_service import ChangeStagingEngine, StagingHandle, StagingStore
from .set_service import RepoSet, RepoSetEngine
from .discovery_service import GitModulesDiscovery, RepoDiscovery
from .state_provider import GitStateProvider, RepoStateProvider

__all__ = [
    'ChangeStagingEngine',
    'StagingHandle',
    'StagingStore',
    'RepoSet',
    'RepoSetEngine',
    'GitModulesDiscovery',
    'RepoDiscovery',
    'GitStateProvider',
    'RepoStateProvider',
]
