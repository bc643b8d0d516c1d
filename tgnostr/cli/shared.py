"""Shared utilities for tgnostr CLI commands."""

from rich.console import Console

console = Console()
