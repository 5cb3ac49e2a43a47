"""
Common CLI utilities and decorators for consistent command behavior.
"""

import json
import sys
import click
from functools import wraps
from pathlib import Path
from rich.console import Console
from rich.markup import escape

from .config import find_workspace_root, load_config
from .exit_codes import INTERRUPTED, CommandError, get_exit_code_for_exception

err_console = Console(stderr=True)


def standard_command(func):
    """
    Decorator that provides standard CLI behavior:
    - Errors on stderr, data on stdout
    - Error objects as JSON when --json is given
    - Exit codes taken from the raised CommandError
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        json_output = kwargs.get('json_output', False)
        try:
            return func(*args, **kwargs)
        except KeyboardInterrupt:
            err_console.print("[red]Interrupted by user[/red]")
            sys.exit(INTERRUPTED)
        except click.ClickException:
            # Click exceptions already have their exit code
            raise
        except CommandError as e:
            if json_output:
                error_obj = {
                    "error": str(e),
                    "type": type(e).__name__,
                    "exit_code": e.exit_code
                }
                # Add extra fields for PartialSuccessError
                if hasattr(e, 'succeeded'):
                    error_obj['succeeded'] = e.succeeded
                    error_obj['failed'] = e.failed
                print(json.dumps(error_obj, ensure_ascii=False), flush=True)
            err_console.print(f"[red]Error:[/red] {escape(str(e))}")
            sys.exit(get_exit_code_for_exception(e))

    return wrapper


def output_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False), flush=True)


def get_root(ctx: click.Context) -> Path:
    """Workspace root: --root, else the nearest repokeep.toml, else cwd."""
    obj = ctx.find_root().obj or {}
    root = obj.get('root')
    if root:
        return Path(root)
    return find_workspace_root() or Path.cwd()


def get_workspace(ctx: click.Context):
    """Build the Workspace for the current invocation."""
    from .workspace import Workspace

    obj = ctx.find_root().obj or {}
    config = obj.get('config') or load_config()
    return Workspace(get_root(ctx), config=config)


# Standard options that many commands share
common_options = {
    'json': click.option('--json', 'json_output', is_flag=True,
                         help='Output as JSON'),
    'define': click.option('-D', '--define', 'defines', multiple=True, metavar='KEY=VALUE',
                           help='Define a version variable (empty value = undefined)'),
    'save': click.option('--save', is_flag=True,
                         help='Write changes to disk instead of staging them'),
}


def add_common_options(*option_names):
    """
    Decorator to add common options to a command.

    Example:
        @add_common_options('json', 'save')
        def my_command(json_output, save):
            ...
    """
    def decorator(func):
        for name in reversed(option_names):
            if name in common_options:
                func = common_options[name](func)
        return func
    return decorator
