"""Publishing commands."""

import asyncio
import json

import click

from . import cli
from .shared import console
from ..errors import BridgeError


@cli.command()
@click.argument("text")
def post(text):
    """Sign TEXT as a note and publish it to the configured relay."""
    from tgnostr.main import run_post

    try:
        reply = asyncio.run(run_post(text))
    except BridgeError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}")
    console.print(f"[green]✓ Relay replied:[/green] {reply}", highlight=False)


@cli.command(name="relay-update")
@click.argument("source", type=click.File("r", encoding="utf-8"))
def relay_update(source):
    """Relay Bot API update(s) from SOURCE ('-' for stdin).

    SOURCE holds one update object or a JSON list of updates.
    """
    from tgnostr.main import run_updates

    try:
        payload = json.load(source)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Invalid JSON: {e}")
    updates = payload if isinstance(payload, list) else [payload]

    try:
        results = asyncio.run(run_updates(updates))
    except BridgeError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}")
    for i, dispatch in enumerate(results, 1):
        style = "green" if dispatch.status == "OK" else "yellow"
        console.print(f"[{style}]{i}. {dispatch.status}[/{style}]", highlight=False)
