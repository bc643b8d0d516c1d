"""tgnostr CLI — command line interface."""

import sys

import click

from tgnostr import __version__
from .shared import console


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="tgnostr")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, debug):
    """tgnostr — relay Telegram channel posts to Nostr"""
    from tgnostr.main import setup_logging
    setup_logging(debug=debug)
    if ctx.invoked_subcommand is None:
        _show_help()


def _show_help():
    """Show all available commands grouped by category."""
    console.print(f"[bold]tgnostr v{__version__}[/bold] — relay Telegram channel posts to Nostr\n")

    groups = {
        "Keys": [
            ("keys normalize", "Normalize a hex or npub/nsec key to hex"),
            ("keys encode", "Encode a hex key as npub/nsec"),
            ("keys derive", "Derive the public key of a secret key"),
        ],
        "Publishing": [
            ("post", "Sign and publish a text note"),
            ("relay-update", "Relay Bot API update(s) from a JSON file"),
        ],
    }

    for category, commands in groups.items():
        console.print(f"  [bold cyan]{category}[/bold cyan]")
        for name, desc in commands:
            console.print(f"    [bold]tgnostr {name:16s}[/bold] {desc}")
        console.print()

    console.print("[dim]Run 'tgnostr <command> --help' for details on a specific command.[/dim]")


# Import all command modules (registers commands onto cli group)
from . import cmd_keys  # noqa: E402, F401
from . import cmd_publish  # noqa: E402, F401


@cli.command(name="help", hidden=True)
def help_cmd():
    """Show all available commands."""
    _show_help()


def main():
    """CLI entry point."""
    try:
        cli(standalone_mode=False)
    except click.UsageError as e:
        if e.ctx:
            click.echo(e.ctx.command.get_usage(e.ctx), err=True)
        click.echo("Try 'tgnostr help' for help.\n", err=True)
        click.echo(f"Error: {e.format_message()}", err=True)
        sys.exit(2)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.exceptions.Exit as e:
        sys.exit(e.code)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(1)
