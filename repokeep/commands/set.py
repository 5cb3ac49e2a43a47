"""
Repository set commands for repokeep.

Sets are named lists of repositories kept under .repokeep/sets/. Every
bump run records the repositories that succeeded in 'good' and those that
failed in 'bad', so the next run can target exactly the leftovers:

    repokeep bump bad --version 1.2.3
"""

import click
from rich.console import Console
from rich.table import Table

from ..cli_utils import add_common_options, get_workspace, output_json, standard_command
from ..exit_codes import NoReposFoundError
from ..services.set_service import RepoSet

console = Console()


@click.group(name='set')
def set_cmd():
    """Manage and combine repository sets.

    Expressions combine sets left to right with + (union), - (difference),
    ^ (symmetric difference) and & (intersection). Computed sets: @all,
    @dirty, @outdated, @cached, @unreleased.

    Examples:

    \b
        repokeep set show '@all - bad'
        repokeep set save release '@unreleased & good' --primary
        repokeep set list
    """
    pass


@set_cmd.command('show')
@click.argument('expression')
@add_common_options('json')
@click.pass_context
@standard_command
def set_show(ctx, expression, json_output):
    """Print the repositories selected by EXPRESSION."""
    workspace = get_workspace(ctx)
    ids = workspace.sets.resolve(expression)
    repos = [r for r in workspace.repos if r.path in ids]

    if json_output:
        output_json({'expression': expression, 'repos': sorted(ids)})
        return

    if not ids:
        console.print(f"[yellow]No repositories match '{expression}'[/yellow]")
        return

    known = {r.path for r in repos}
    for repo in repos:
        click.echo(repo.path)
    for missing in sorted(ids - known):
        click.echo(f"{missing} (not in workspace)")


@set_cmd.command('save')
@click.argument('name')
@click.argument('expression')
@click.option('--primary', is_flag=True, help='Write the undated base set instead of a dated snapshot')
@click.option('--hint', default=None, help='Note recorded in the set file header')
@add_common_options('json')
@click.pass_context
@standard_command
def set_save(ctx, name, expression, primary, hint, json_output):
    """Save the result of EXPRESSION as set NAME."""
    workspace = get_workspace(ctx)
    ids = workspace.sets.resolve(expression)
    if not ids:
        raise NoReposFoundError(f"No repositories match '{expression}'")

    order = [r.path for r in workspace.repos if r.path in ids]
    order.extend(sorted(ids - set(order)))
    path = workspace.sets.save(name, RepoSet(order), primary=primary, hint=hint or expression)

    if json_output:
        output_json({'name': name, 'path': str(path), 'repos': order})
    else:
        console.print(f"[green]✓[/green] Saved {len(order)} repositories to {path.name}")


@set_cmd.command('list')
@add_common_options('json')
@click.pass_context
@standard_command
def set_list(ctx, json_output):
    """List persisted sets and their snapshots."""
    workspace = get_workspace(ctx)
    engine = workspace.sets

    rows = []
    for name in engine.names():
        snapshots = engine.snapshots(name)
        has_base = (engine.directory / name).is_file()
        current = engine.load(name)
        rows.append({
            'name': name,
            'base': has_base,
            'snapshots': [day.isoformat() for day, _ in snapshots],
            'size': len(current),
        })

    if json_output:
        output_json(rows)
        return

    if not rows:
        console.print("[yellow]No sets saved yet[/yellow]")
        return

    table = Table(title="Repository sets", show_header=True)
    table.add_column("Name", style="cyan")
    table.add_column("Repos", justify="right")
    table.add_column("Base")
    table.add_column("Snapshots")
    for row in rows:
        table.add_row(
            row['name'],
            str(row['size']),
            "✓" if row['base'] else "",
            ", ".join(row['snapshots']),
        )
    console.print(table)
