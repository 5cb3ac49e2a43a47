"""
Handles the 'changes' command group: inspect and apply staged changes.

Changes staged by an earlier run (without --save) live in
.repokeep/changes.gz until they are applied or cleared.
"""

import difflib
import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..cli_utils import add_common_options, get_workspace, output_json, standard_command
from ..domain.change import ApplyReport, OutcomeStatus
from ..exit_codes import PartialSuccessError
from ..infra.file_store import read_bytes

console = Console()

_STATUS_STYLE = {
    OutcomeStatus.APPLIED: "[green]applied[/green]",
    OutcomeStatus.STALE: "[yellow]stale[/yellow]",
    OutcomeStatus.FAILED: "[red]failed[/red]",
    OutcomeStatus.PENDING: "[blue]pending[/blue]",
}


def render_report(report: ApplyReport, title: str = "Changes") -> None:
    """Print an ApplyReport as a table followed by a one-line summary."""
    if not report.outcomes:
        console.print("[dim]No changes[/dim]")
        return

    table = Table(title=title, show_header=True)
    table.add_column("Repository", style="cyan")
    table.add_column("File")
    table.add_column("Status")
    table.add_column("Details")

    for outcome in report.outcomes:
        details = str(outcome.error) if outcome.error else outcome.change.reason
        table.add_row(
            outcome.change.repo,
            outcome.change.path,
            _STATUS_STYLE[outcome.status],
            escape(details),
        )
    console.print(table)

    if report.saved:
        console.print(
            f"Applied {len(report.applied)}, stale {len(report.stale)}, failed {len(report.failed)}"
        )
    else:
        console.print(f"Staged {len(report.pending)} changes; run 'repokeep changes apply' to write them")


def check_report(report: ApplyReport) -> None:
    """
    Raises:
        PartialSuccessError: some changes were stale or failed
    """
    if not report.success:
        raise PartialSuccessError(
            f"{len(report.stale) + len(report.failed)} changes could not be applied "
            f"and remain staged",
            succeeded=len(report.applied),
            failed=len(report.stale) + len(report.failed),
        )


@click.group(name='changes')
def changes_cmd():
    """Inspect and apply staged changes.

    Examples:

    \b
        repokeep changes list
        repokeep changes diff
        repokeep changes apply
        repokeep changes clear
    """
    pass


@changes_cmd.command('list')
@add_common_options('json')
@click.pass_context
@standard_command
def changes_list(ctx, json_output):
    """List staged changes."""
    workspace = get_workspace(ctx)
    store = workspace.staging.load_pending()

    if json_output:
        output_json([
            {k: v for k, v in c.to_dict().items() if k != 'new_content'}
            for c in store
        ])
        return

    if not store:
        console.print("[dim]Nothing staged[/dim]")
        return

    table = Table(title=f"Staged changes ({len(store)})", show_header=True)
    table.add_column("Repository", style="cyan")
    table.add_column("File")
    table.add_column("Producer")
    table.add_column("Reason")
    for change in store:
        table.add_row(change.repo, change.path, change.producer, escape(change.reason))
    console.print(table)


@changes_cmd.command('diff')
@click.argument('repo', required=False)
@click.pass_context
@standard_command
def changes_diff(ctx, repo):
    """Show staged changes as unified diffs against the files on disk."""
    workspace = get_workspace(ctx)
    store = workspace.staging.load_pending()

    for change in store:
        if repo and change.repo != repo:
            continue
        base = workspace.root if change.repo == '.' else workspace.root / change.repo
        current = read_bytes(base / change.path)
        old_text = current.decode('utf-8', errors='replace') if current is not None else ''
        name = f"{change.repo}/{change.path}"
        diff = difflib.unified_diff(
            old_text.splitlines(keepends=True),
            change.new_content.splitlines(keepends=True),
            fromfile=f"a/{name}",
            tofile=f"b/{name}",
        )
        click.echo(''.join(diff), nl=False)


@changes_cmd.command('apply')
@add_common_options('json')
@click.pass_context
@standard_command
def changes_apply(ctx, json_output):
    """Write staged changes to disk.

    A file that was modified since its change was staged is left alone and
    its change stays staged; re-run after resolving it.
    """
    workspace = get_workspace(ctx)
    with workspace.lock():
        report = workspace.apply_pending(save=True)

    if json_output:
        output_json(report.to_dict())
    else:
        render_report(report, title="Applied changes")
    check_report(report)


@changes_cmd.command('clear')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
@standard_command
def changes_clear(ctx, yes):
    """Discard all staged changes."""
    workspace = get_workspace(ctx)
    with workspace.lock():
        store = workspace.staging.load_pending()
        if not store:
            console.print("[dim]Nothing staged[/dim]")
            return
        if not yes:
            click.confirm(f"Discard {len(store)} staged changes?", abort=True)
        workspace.staging.discard()
    console.print(f"[green]✓[/green] Discarded {len(store)} changes")
