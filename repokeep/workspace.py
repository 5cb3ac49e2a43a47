"""
Workspace: the repositories of one root plus the set and staging engines.

Two run shapes are supported:
    stage()          resolve a set, run producers, then apply or persist
    apply_pending()  apply what an earlier run persisted

Commands that touch the staging artifact hold the workspace lock so that
two invocations against the same workspace cannot race.
"""

from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date as _date
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .config import STATE_DIR, load_config, load_workspace_config
from .domain.change import ApplyReport
from .domain.repository import Repo
from .domain.version import ResolvedVersion
from .errors import ConflictError, RepokeepError, WorkspaceLockedError
from .exit_codes import NoReposFoundError
from .infra.git_client import GitClient
from .producers import ProducerContext, ProducerResult, build_producers
from .release_env import ReleaseEnv, builtin_variables, merge_variables, resolve_release
from .services.discovery_service import GitModulesDiscovery, RepoDiscovery
from .services.set_service import RepoSetEngine
from .services.staging_service import ChangeStagingEngine
from .services.state_provider import GitStateProvider, RepoStateProvider

logger = logging.getLogger(__name__)


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Owned by another user
        return True
    return True


LOCK_FILE = "lock"
GOOD_SET = "good"
BAD_SET = "bad"


@dataclass
class RunResult:
    """Outcome of one stage() run."""
    repos: List[Repo] = field(default_factory=list)
    diagnostics: Dict[str, List[str]] = field(default_factory=dict)
    good: List[str] = field(default_factory=list)
    bad: List[str] = field(default_factory=list)
    report: ApplyReport = field(default_factory=ApplyReport)

    def note(self, repo: str, message: str) -> None:
        self.diagnostics.setdefault(repo, []).append(message)

    @property
    def success(self) -> bool:
        return not self.bad and self.report.success

    def to_dict(self) -> Dict[str, Any]:
        return {
            'repos': [r.path for r in self.repos],
            'diagnostics': self.diagnostics,
            'good': self.good,
            'bad': self.bad,
            'report': self.report.to_dict(),
        }


class Workspace:
    """
    Owns the discovered repositories, one RepoSetEngine and one
    ChangeStagingEngine.

    Example:
        workspace = Workspace(Path("~/src/workspace"))
        with workspace.lock():
            version = workspace.resolve_version("%tag || %date-nightly")
            result = workspace.stage("@all - bad", ["python-version"], version=version)
    """

    def __init__(
        self,
        root: Union[str, Path],
        config: Optional[Dict[str, Any]] = None,
        repos: Optional[Sequence[Repo]] = None,
        discovery: Optional[RepoDiscovery] = None,
        state_provider: Optional[RepoStateProvider] = None,
        git_client: Optional[GitClient] = None,
    ):
        """
        Initialize Workspace.

        Args:
            root: Workspace root directory
            config: Configuration dict (loads default if None)
            repos: Repositories to manage (discovered if None)
            discovery: Discovery used when repos is None
            state_provider: Predicates for computed sets
            git_client: GitClient instance (creates new if None)
        """
        self.root = Path(root)
        self.config = config or load_config()
        self.workspace_config = load_workspace_config(self.root)
        self.git = git_client or GitClient()

        if repos is None:
            discovery = discovery or GitModulesDiscovery(self.git, self.workspace_config['repos'])
            repos = discovery.discover(self.root)
        self.repos: List[Repo] = list(repos)

        parallelism = self.config.get('general', {}).get('parallelism', 4)
        sets_config = self.config.get('sets', {})
        self.sets = RepoSetEngine(
            self.root,
            self.repos,
            state_provider or GitStateProvider(self.root, self.git),
            directory=sets_config.get('directory'),
            retain=sets_config.get('retain', 3),
            parallelism=parallelism,
        )
        self.staging = ChangeStagingEngine(
            self.root,
            self.config.get('staging', {}).get('path'),
            parallelism=parallelism,
        )
        self.parallelism = max(1, int(parallelism))
        self.lock_path = self.root / STATE_DIR / LOCK_FILE

    def repo(self, path: str) -> Optional[Repo]:
        for repo in self.repos:
            if repo.path == path:
                return repo
        return None

    @contextmanager
    def lock(self):
        """
        Hold the exclusive workspace lock.

        Raises:
            WorkspaceLockedError: another invocation holds it
        """
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            owner = self._lock_owner()
            if owner is None or _pid_alive(owner):
                raise WorkspaceLockedError(str(self.lock_path), owner)
            # Left behind by a process that no longer exists
            logger.warning(f"Removing stale lock {self.lock_path} of process {owner}")
            self.lock_path.unlink(missing_ok=True)
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                raise WorkspaceLockedError(str(self.lock_path), self._lock_owner())

        with os.fdopen(fd, 'w') as f:
            f.write(f"{os.getpid()}\n")
        logger.debug(f"Acquired {self.lock_path}")

        try:
            yield self
        finally:
            try:
                self.lock_path.unlink()
            except FileNotFoundError:
                logger.warning(f"Lock file {self.lock_path} vanished while held")

    def _lock_owner(self) -> Optional[int]:
        try:
            return int(self.lock_path.read_text().strip())
        except (OSError, ValueError):
            return None

    # Versions

    def variables(
        self,
        repo: Optional[Repo] = None,
        defines: Optional[Mapping[str, Optional[str]]] = None,
        release_env: Optional[ReleaseEnv] = None,
        today: Optional[_date] = None,
    ) -> Dict[str, Any]:
        """
        Variable bindings for version resolution.

        Later sources win: built-ins, workspace [variables], repo-local
        variables (and branch), then ``--define`` values.
        """
        target = repo or self.repo('.')
        repo_path = None
        if target is not None and self.git.is_git_repo(str(target.to_path(self.root))):
            repo_path = str(target.to_path(self.root))

        builtins = builtin_variables(
            repo_path,
            release_env or ReleaseEnv.from_environ(),
            self.git,
            today,
        )

        repo_layer: Dict[str, Any] = {}
        if target is not None:
            repo_layer.update(target.config.get('variables', {}))
            if target.config.get('branch'):
                repo_layer['branch'] = target.config['branch']

        return merge_variables(builtins, self.workspace_config['variables'], repo_layer, defines)

    def resolve_version(
        self,
        spec: Optional[str],
        defines: Optional[Mapping[str, Optional[str]]] = None,
        environment: Optional[Mapping[str, Any]] = None,
        repo: Optional[Repo] = None,
        append: Sequence[str] = (),
        github_release: bool = False,
        release_env: Optional[ReleaseEnv] = None,
        today: Optional[_date] = None,
        fallback: bool = False,
    ) -> ResolvedVersion:
        """
        Resolve ``spec`` with the workspace variables.

        Only with ``fallback`` does an unresolvable specification become a
        dated release, as CI version outputs want.

        Raises:
            ParseError: malformed specification
            EmptyResolution: no candidate produced a version
        """
        release_env = release_env or ReleaseEnv.from_environ()
        variables = self.variables(repo, defines, release_env, today)
        return resolve_release(
            spec,
            variables,
            environment if environment is not None else dict(os.environ),
            prefixes=self.config.get('version', {}).get('prefixes', ()),
            append=append,
            release_env=release_env,
            github_release=github_release,
            today=today,
            fallback=fallback,
        )

    # Runs

    def _produce(self, repo: Repo, producers, context: ProducerContext) -> ProducerResult:
        disabled = set(repo.config.get('disabled', []))
        result = ProducerResult()
        for producer in producers:
            if producer.name in disabled:
                logger.debug(f"{producer.name} disabled for {repo}")
                continue
            result.extend(producer.produce(repo, context))
        return result

    def stage(
        self,
        expression: str,
        producer_names: Iterable[str],
        version: Optional[ResolvedVersion] = None,
        save: bool = True,
        bump: Optional[str] = None,
        hint: Optional[str] = None,
        today: Optional[_date] = None,
    ) -> RunResult:
        """
        Run producers over the repositories selected by ``expression``.

        Proposals are merged into the staging store, which is then applied
        (``save=True``) or persisted for a later apply. Repositories whose
        producers failed, conflicted, or whose changes could not be applied
        are recorded in the ``bad`` set, the rest in ``good``.

        Raises:
            ParseError, UnknownSetError: invalid expression
            NoReposFoundError: the expression selects nothing
            UnknownProducerError: a producer name is not registered
        """
        producer_names = list(producer_names)
        producers = build_producers(producer_names)
        repos = self.sets.resolve_repos(expression)
        if not repos:
            raise NoReposFoundError(f"No repositories match '{expression}'")

        # Start from what earlier runs left staged
        self.staging.store = self.staging.load_pending()

        context = ProducerContext(root=self.root, version=version, bump=bump)
        run = RunResult(repos=repos)
        failed = set()

        def produce_one(repo: Repo):
            try:
                return self._produce(repo, producers, context), None
            except (RepokeepError, OSError) as e:
                return None, str(e)
            except Exception as e:
                logger.exception(f"{repo}: producer failed")
                return None, f"{type(e).__name__}: {e}"

        with ThreadPoolExecutor(max_workers=self.parallelism) as executor:
            outcomes = list(executor.map(produce_one, repos))

        for repo, (result, error) in zip(repos, outcomes):
            if error is not None:
                logger.error(f"{repo}: {error}")
                run.note(repo.path, error)
                failed.add(repo.path)
                continue
            for message in result.diagnostics:
                run.note(repo.path, message)
            for message in result.errors:
                logger.error(f"{repo}: {message}")
                run.note(repo.path, message)
                failed.add(repo.path)
            for change in result.changes:
                try:
                    self.staging.propose(change)
                except ConflictError as e:
                    run.note(repo.path, str(e))
                    failed.add(repo.path)

        run.report = self.staging.apply(save=save)
        for outcome in run.report.stale + run.report.failed:
            run.note(outcome.change.repo, str(outcome.error))
            failed.add(outcome.change.repo)

        run.bad = [r.path for r in repos if r.path in failed]
        run.good = [r.path for r in repos if r.path not in failed]

        hint = hint or f"{' '.join(producer_names)} on {expression}"
        self.sets.save(GOOD_SET, run.good, hint=hint, today=today)
        self.sets.save(BAD_SET, run.bad, hint=hint, today=today)
        return run

    def apply_pending(self, save: bool = True) -> ApplyReport:
        """
        Apply the persisted store.

        Raises:
            CorruptStoreError: the artifact is unreadable
        """
        store = self.staging.load_pending()
        self.staging.store = store
        return self.staging.apply(store, save=save)
