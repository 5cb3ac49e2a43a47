#!/usr/bin/env python3

import click
from pathlib import Path

from repokeep.config import load_config, set_log_level
from repokeep.commands.version import version_cmd
from repokeep.commands.bump import bump_cmd
from repokeep.commands.changes import changes_cmd
from repokeep.commands.set import set_cmd


@click.group()
@click.option('--root', type=click.Path(file_okay=False, path_type=Path), default=None,
              help='Workspace root (default: nearest directory with repokeep.toml)')
@click.option('-v', '--verbose', is_flag=True, help='Enable debug logging')
@click.version_option(package_name='repokeep')
@click.pass_context
def cli(ctx, root, verbose):
    """repokeep - Maintenance across many repositories at once.

    Resolves release versions, stages file changes in many repositories
    and applies them together, and records which repositories succeeded
    so the next run can target the rest.
    """
    config = load_config()
    if verbose:
        set_log_level('DEBUG')
    else:
        set_log_level(config.get('logging', {}).get('level', 'INFO'))
    ctx.obj = {'root': root, 'config': config, 'verbose': verbose}


cli.add_command(version_cmd)
cli.add_command(bump_cmd)
cli.add_command(changes_cmd)
cli.add_command(set_cmd)


def main():
    cli()

if __name__ == "__main__":
    main()
