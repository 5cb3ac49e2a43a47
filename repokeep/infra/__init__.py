"""
Infrastructure layer for repokeep.

Contains abstractions for external systems:
- GitClient: Git command execution
- FileStore: Atomic, optionally compressed JSON persistence

These provide clean interfaces that can be mocked for testing.
"""

from .git_client import GitClient, GitDescribe
from .file_store import FileStore, write_atomic, read_bytes

__all__ = [
    'GitClient',
    'GitDescribe',
    'FileStore',
    'write_atomic',
    'read_bytes',
]
