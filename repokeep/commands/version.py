"""
Handles the 'version' command: resolve a wobbly version specification.
"""

import os
import click
from pathlib import Path
from rich.console import Console
from rich.table import Table

from ..cli_utils import add_common_options, get_workspace, output_json, standard_command
from ..errors import VersionFormatError
from ..release_env import parse_defines
from ..version_formats import TARGETS, coerce

console = Console()


def _all_formats(version):
    formats = {}
    for target in TARGETS:
        try:
            formats[target] = coerce(version, target)
        except VersionFormatError:
            formats[target] = None
    return formats


@click.command('version')
@click.argument('spec', required=False)
@add_common_options('define', 'json')
@click.option('--format', 'target', type=click.Choice(TARGETS), default=None,
              help='Render the version for a package format')
@click.option('--append', multiple=True, metavar='PART',
              help='Append a dot-separated part, e.g. fc39')
@click.option('--repo', 'repo_path', default=None,
              help='Use the variables of this repository')
@click.option('--github-release', is_flag=True,
              help='Fall back to the tag or branch in GITHUB_REF')
@click.option('--output', type=click.Path(dir_okay=False, path_type=Path), default=None,
              help='Append NAME=VALUE lines to this file')
@click.option('--output-from-env', metavar='VAR', default=None,
              help='Like --output, with the path read from VAR (e.g. GITHUB_OUTPUT)')
@click.option('--version-to', metavar='NAME', default=None,
              help='Write the version as NAME=VALUE to the output file')
@click.option('--msi-version-to', metavar='NAME', default=None,
              help='Write the MSI ProductVersion as NAME=VALUE to the output file')
@click.option('--is-pre-to', metavar='NAME', default=None,
              help='Write NAME=yes or NAME=no to the output file for pre-releases')
@click.option('--github-action', is_flag=True,
              help='Shorthand for --output-from-env GITHUB_OUTPUT --version-to version --is-pre-to pre')
@click.pass_context
@standard_command
def version_cmd(ctx, spec, defines, json_output, target, append, repo_path, github_release,
                output, output_from_env, version_to, msi_version_to, is_pre_to, github_action):
    """Resolve a version specification.

    SPEC lists fallback candidates separated by '||'; the first one that
    evaluates to a non-empty value wins. Variables: %date, %tag, %branch,
    anything given with --define, and ${{ NAME }} environment lookups.

    Examples:

    \b
        repokeep version '%tag || %date-nightly'
        repokeep version '${{ github.event.inputs.release }} || %date-nightly1' --format msi
        repokeep version 1.2.3-%custom -D custom=beta1 --format rpm
        repokeep version '%tag || %date-nightly' --github-release --github-action
    """
    if github_action:
        output_from_env = output_from_env or 'GITHUB_OUTPUT'
        version_to = version_to or 'version'
        is_pre_to = is_pre_to or 'pre'
    if output is not None and output_from_env:
        raise click.UsageError("--output and --output-from-env are mutually exclusive")

    workspace = get_workspace(ctx)
    repo = workspace.repo(repo_path) if repo_path else None
    if repo_path and repo is None:
        raise click.BadParameter(f"No repository at '{repo_path}'", param_hint='--repo')

    version = workspace.resolve_version(
        spec,
        defines=parse_defines(defines),
        repo=repo,
        append=append,
        github_release=github_release,
        fallback=True,
    )

    text = coerce(version, target or workspace.config.get('version', {}).get('target', 'text'))

    if output_from_env:
        value = os.environ.get(output_from_env)
        if not value:
            raise click.BadParameter(f"{output_from_env} is not set", param_hint='--output-from-env')
        output = Path(value)

    if output is not None:
        lines = []
        if version_to:
            lines.append(f"{version_to}={text}\n")
        if msi_version_to:
            lines.append(f"{msi_version_to}={coerce(version, 'msi')}\n")
        if is_pre_to:
            lines.append(f"{is_pre_to}={'yes' if version.is_pre else 'no'}\n")
        if lines:
            with open(output, 'a', encoding='utf-8') as f:
                f.writelines(lines)

    if json_output:
        data = version.to_dict()
        data['formats'] = _all_formats(version)
        output_json(data)
        return

    if (ctx.find_root().obj or {}).get('verbose'):
        table = Table(title=str(version), show_header=True)
        table.add_column("Format", style="cyan")
        table.add_column("Value")
        for name, value in _all_formats(version).items():
            table.add_row(name, value if value is not None else "[dim]n/a[/dim]")
        console.print(table)
    else:
        click.echo(text)
