"""CLI application setup using Typer.

Provides the command-line interface for the Codoc chatbot.
"""

from codoc.cli.main import app

__all__ = ["app"]
