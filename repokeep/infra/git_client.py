"""
Git client infrastructure for repokeep.

Provides a clean abstraction over git command execution.
All git operations go through this client, making them:
- Easy to mock for testing
- Consistent in error handling
- Isolated from business logic
"""

import re
import shlex
import subprocess
from dataclasses import dataclass
from typing import Optional, Tuple
from pathlib import Path
import logging

logger = logging.getLogger(__name__)

# Output of `git describe --tags --long`: <tag>-<offset>-g<hash>
_DESCRIBE = re.compile(r'^(?P<tag>.+)-(?P<offset>\d+)-g(?P<commit>[0-9a-f]+)$')


@dataclass
class GitDescribe:
    """Nearest tag reachable from HEAD and the number of commits since it."""
    tag: str
    offset: int
    commit: str

    @property
    def exact(self) -> bool:
        return self.offset == 0


class GitClient:
    """
    Abstraction over git commands.

    Provides methods for common git operations with consistent
    error handling and return types.

    Example:
        client = GitClient()
        if client.is_dirty("/path/to/repo"):
            print("Repository has unstaged changes")
    """

    def __init__(self, timeout: int = 30):
        """
        Initialize GitClient.

        Args:
            timeout: Command timeout in seconds (default: 30)
        """
        self.timeout = timeout

    def _run(self, cmd: str, cwd: str) -> Tuple[Optional[str], int]:
        """
        Run a git command.

        Args:
            cmd: Command to run
            cwd: Working directory

        Returns:
            Tuple of (stdout, returncode); returncode is -1 if git could not
            be run at all
        """
        try:
            result = subprocess.run(
                cmd,
                shell=True,
                cwd=str(cwd),
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Git command timed out: {cmd}")
            return None, -1
        except OSError as e:
            logger.error(f"Git command failed: {cmd} - {e}")
            return None, -1

        if result.returncode not in (0, 1):
            logger.debug(f"{cmd} in {cwd} exited {result.returncode}: {result.stderr.strip()}")

        output = result.stdout
        return output.strip() if output else None, result.returncode

    def is_git_repo(self, path: str) -> bool:
        """Check if path is a git repository (or a submodule checkout)."""
        return (Path(path) / ".git").exists()

    def ahead_behind(self, path: str) -> Optional[Tuple[int, int]]:
        """
        Commits ahead of and behind the upstream branch.

        Returns:
            (ahead, behind), or None when there is no upstream
        """
        output, code = self._run("git rev-parse --abbrev-ref @{upstream}", cwd=path)
        if code != 0 or not output:
            return None

        output, code = self._run("git rev-list --left-right --count HEAD...@{upstream}", cwd=path)
        if code != 0 or not output:
            return None

        parts = output.split()
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            return None
        return int(parts[0]), int(parts[1])

    def is_dirty(self, path: str) -> bool:
        """Unstaged changes in the working tree (`git diff --quiet`)."""
        _, code = self._run("git diff --quiet", cwd=path)
        return code == 1

    def has_cached(self, path: str) -> bool:
        """Changes staged in the index (`git diff --cached --quiet`)."""
        _, code = self._run("git diff --cached --quiet", cwd=path)
        return code == 1

    def describe(self, path: str) -> Optional[GitDescribe]:
        """
        Describe HEAD relative to the nearest tag.

        Returns:
            GitDescribe, or None when the repository has no tags
        """
        output, code = self._run("git describe --tags --long", cwd=path)
        if code != 0 or not output:
            return None

        match = _DESCRIBE.match(output)
        if not match:
            logger.debug(f"Unrecognized describe output in {path}: {output}")
            return None

        return GitDescribe(
            tag=match.group('tag'),
            offset=int(match.group('offset')),
            commit=match.group('commit'),
        )

    def exact_tag(self, path: str) -> Optional[str]:
        """Tag pointing at HEAD, if any."""
        output, code = self._run("git describe --tags --exact-match", cwd=path)
        if code == 0 and output:
            return output
        return None

    def remote_url(self, path: str, remote: str = "origin") -> Optional[str]:
        """
        Get remote URL.

        Args:
            path: Path to git repository
            remote: Remote name (default: "origin")

        Returns:
            Remote URL or None if not found
        """
        output, code = self._run(f"git config --get remote.{shlex.quote(remote)}.url", cwd=path)
        if code == 0 and output:
            return output
        return None

    def current_branch(self, path: str) -> Optional[str]:
        """Get current branch name; None on a detached HEAD."""
        output, code = self._run("git rev-parse --abbrev-ref HEAD", cwd=path)
        if code == 0 and output and output != "HEAD":
            return output
        return None
