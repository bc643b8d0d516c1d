"""Key commands."""

import click

from . import cli
from .shared import console
from ..errors import ValidationError
from ..keys import PUBLIC_PREFIX, SECRET_PREFIX, derive_public_key, encode_key, normalize_key

_PREFIXES = click.Choice([PUBLIC_PREFIX, SECRET_PREFIX])


@cli.group()
def keys():
    """Inspect and convert Nostr keys."""
    pass


@keys.command()
@click.argument("key")
@click.option("--prefix", type=_PREFIXES, default=PUBLIC_PREFIX, show_default=True,
              help="Expected bech32 prefix")
def normalize(key, prefix):
    """Normalize a hex or bech32 KEY to lower-case hex."""
    try:
        console.print(normalize_key(key, prefix), highlight=False)
    except ValidationError as e:
        raise click.ClickException(str(e))


@keys.command()
@click.argument("key_hex")
@click.option("--prefix", type=_PREFIXES, default=PUBLIC_PREFIX, show_default=True,
              help="Bech32 prefix to encode with")
def encode(key_hex, prefix):
    """Encode a 64-char hex key as npub/nsec."""
    try:
        console.print(encode_key(key_hex, prefix), highlight=False)
    except ValidationError as e:
        raise click.ClickException(str(e))


@keys.command()
@click.argument("secret")
def derive(secret):
    """Print the public key (hex and npub) of a SECRET key."""
    try:
        pub = derive_public_key(secret)
    except ValidationError as e:
        raise click.ClickException(str(e))
    console.print(f"[bold]hex [/bold] {pub}", highlight=False)
    console.print(f"[bold]npub[/bold] {encode_key(pub, PUBLIC_PREFIX)}", highlight=False)
