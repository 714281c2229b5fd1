"""Decorators for readshelf CLI commands."""

import functools
import logging
from typing import Callable, Any
import typer
from rich.console import Console

from .exceptions import BookNotFoundError, IndexBackendError, IngestionError, ToolExecutionError

logger = logging.getLogger(__name__)
console = Console()


def handle_library_errors(func: Callable) -> Callable:
    """
    Decorator to handle common library operation errors.

    Centralizes error reporting for:
    - BookNotFoundError: No such book for this owner
    - IngestionError: Upload rejected (format, duplicate, page count, package)
    - ToolExecutionError: External utility missing or failed
    - IndexBackendError: Search index unreachable or rejected the request
    - FileNotFoundError / PermissionError / ValueError
    - General exceptions: Unexpected errors
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Any:
        try:
            return func(*args, **kwargs)
        except BookNotFoundError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(code=1)
        except IngestionError as e:
            console.print(f"[bold red]Rejected:[/bold red] {e}")
            raise typer.Exit(code=1)
        except ToolExecutionError as e:
            console.print(f"[bold red]Error:[/bold red] External tool failed: {e}")
            console.print("[yellow]Tip: Check that poppler-utils and unzip are installed[/yellow]")
            raise typer.Exit(code=1)
        except IndexBackendError as e:
            console.print(f"[bold red]Error:[/bold red] Search index: {e}")
            raise typer.Exit(code=1)
        except FileNotFoundError as e:
            console.print(f"[bold red]Error:[/bold red] File not found: {e}")
            raise typer.Exit(code=1)
        except PermissionError as e:
            console.print(f"[bold red]Error:[/bold red] Permission denied: {e}")
            raise typer.Exit(code=1)
        except ValueError as e:
            console.print(f"[bold red]Error:[/bold red] Invalid input: {e}")
            raise typer.Exit(code=1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user[/yellow]")
            raise typer.Exit(code=130)
        except typer.Exit:
            raise
        except Exception as e:
            logger.error(f"Unexpected error in {func.__name__}: {e}", exc_info=True)
            console.print(f"[bold red]Unexpected error:[/bold red] {e}")
            raise typer.Exit(code=1)

    return wrapper
