"""
Handles the 'bump' command: propose manifest version changes across a set
of repositories.
"""

import click
from rich.console import Console
from rich.markup import escape

from ..cli_utils import add_common_options, get_workspace, output_json, standard_command
from ..producers import KNOWN_PRODUCERS
from ..producers.version_bump import BUMP_PARTS
from ..release_env import parse_defines
from .changes import check_report, render_report

console = Console()


@click.command('bump')
@click.argument('expression', default='@all')
@click.option('-p', '--producer', 'producers', multiple=True,
              type=click.Choice(sorted(KNOWN_PRODUCERS)),
              help='Producer to run (default: all)')
@click.option('--version', 'spec', default=None,
              help='Version specification to set, e.g. "%tag || %date-nightly"')
@click.option('--part', type=click.Choice(BUMP_PARTS), default=None,
              help='Bump this part of the current version instead')
@add_common_options('define', 'save', 'json')
@click.pass_context
@standard_command
def bump_cmd(ctx, expression, producers, spec, part, defines, save, json_output):
    """Set or bump manifest versions in the repositories of EXPRESSION.

    Without --save the changes are staged in .repokeep/changes.gz and can
    be reviewed with 'repokeep changes diff' before 'repokeep changes apply'.

    Examples:

    \b
        repokeep bump --version 1.4.0
        repokeep bump '@all - bad' --part minor --save
        repokeep bump good -p rust-version --version '%tag || %date-nightly'
    """
    if not spec and not part:
        raise click.UsageError("Give --version or --part")
    if spec and part:
        raise click.UsageError("--version and --part are mutually exclusive")

    workspace = get_workspace(ctx)
    version = None
    if spec:
        version = workspace.resolve_version(spec, defines=parse_defines(defines))

    with workspace.lock():
        run = workspace.stage(
            expression,
            producers or sorted(KNOWN_PRODUCERS),
            version=version,
            save=save,
            bump=part,
        )

    if json_output:
        data = run.to_dict()
        if version is not None:
            data['version'] = version.to_dict()
        output_json(data)
    else:
        if version is not None:
            console.print(f"Version: [bold]{escape(str(version))}[/bold]")
        for repo, messages in run.diagnostics.items():
            for message in messages:
                console.print(f"[yellow]{escape(repo)}[/yellow]: {escape(message)}")
        render_report(run.report, title="Version changes")
        if run.bad:
            console.print(f"[red]{len(run.bad)} repositories recorded in set 'bad'[/red]")

    check_report(run.report)
