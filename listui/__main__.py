"""
Entry point for `python -m listui` and the `listui` script. Turns uncaught
errors into a panel and an exit status.
"""

import asyncio
import logging
import sys

import typer
from rich.console import Console

from listui.cli.app import app
from listui.cli.formatters import format_error_with_suggestions
from listui.exceptions import ListuiError


def main() -> None:
    """Runs the typer app and maps uncaught exceptions to exit codes."""
    log = logging.getLogger("listui")
    console = Console()

    try:
        app()
    except (typer.Exit, typer.Abort):
        pass
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\n[yellow]Stopped by user.[/yellow]")
        sys.exit(0)
    except ListuiError as e:
        console.print(f"\n{format_error_with_suggestions(e)}")
        sys.exit(1)
    except Exception as e:
        console.print(f"\n{format_error_with_suggestions(e, {'type': 'Unexpected'})}")
        log.debug("Full traceback:", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
