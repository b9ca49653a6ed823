"""
Runs the qup command line. Errors raised by sessions, settings or favorites are
shown as a panel and end the process with status 1.
"""

import asyncio
import logging
import os
import sys

import typer
from rich.console import Console

from qup.cli.app import app
from qup.cli.formatters import format_error_with_suggestions
from qup.exceptions import QupError

log = logging.getLogger("qup")

INTERRUPTED_MESSAGE = "Stopped by the user. Run the same command again to resume."


def main() -> None:
    # Windows consoles default to a legacy code page.
    if os.name == "nt":
        try:
            sys.stdout.reconfigure(encoding="utf-8")
            sys.stderr.reconfigure(encoding="utf-8")
        except (TypeError, AttributeError):
            pass

    console = Console()
    try:
        app()
    except (typer.Exit, typer.Abort):
        pass
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print(f"\n[yellow]{INTERRUPTED_MESSAGE}[/yellow]")
        sys.exit(0)
    except QupError as e:
        console.print(f"\n{format_error_with_suggestions(e)}")
        sys.exit(1)
    except Exception as e:
        console.print(f"\n{format_error_with_suggestions(e, {'type': 'Unexpected'})}")
        log.debug("Unhandled error.", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
