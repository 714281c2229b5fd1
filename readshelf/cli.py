from pathlib import Path
import logging
from typing import List, Optional
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.traceback import install

from .config import ReadShelfConfig, load_config, save_config, get_config_path
from .decorators import handle_library_errors
from .services.ingestion import CONTENT_TYPES

# Initialize Rich Traceback for better error messages
install(show_locals=False)

# Initialize Rich Console
console = Console()

# Configure logging to use Rich's RichHandler
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True)]
)
logger = logging.getLogger(__name__)

app = typer.Typer(help="readshelf - personal e-book library server")

CONTENT_TYPE_BY_SUFFIX = {f".{fmt}": content_type for content_type, fmt in CONTENT_TYPES.items()}


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose mode"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="Config file (defaults to ~/.config/readshelf/config.json)"),
):
    """
    readshelf - upload, read and search PDF and EPUB books.
    """
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        console.print("[bold green]Verbose mode enabled.[/bold green]")
    ctx.obj = {"config_file": config_file}


def _config(ctx: typer.Context, library_path: Optional[Path] = None) -> ReadShelfConfig:
    config = load_config((ctx.obj or {}).get("config_file"))
    if library_path is not None:
        config.storage.library_path = str(library_path)
    return config


def _open_library(config: ReadShelfConfig):
    from .library import Library

    # One-shot commands must not exit before the index feed finishes
    config.tasks.synchronous = True
    return Library.open(config)


@app.command()
@handle_library_errors
def ingest(
    ctx: typer.Context,
    files: List[Path] = typer.Argument(..., help="PDF or EPUB files to add"),
    library_path: Optional[Path] = typer.Option(None, "--library", "-l", help="Library directory (defaults from config)"),
    owner: Optional[int] = typer.Option(None, "--owner", help="Owner id (defaults from config)"),
):
    """
    Add PDF/EPUB files to the library and index them.

    Examples:
        readshelf ingest book.pdf novel.epub
        readshelf ingest ~/Downloads/*.epub --library ~/shelf --owner 2
    """
    config = _config(ctx, library_path)
    owner_id = owner if owner is not None else config.server.default_owner_id
    lib = _open_library(config)

    try:
        for file_path in files:
            if not file_path.is_file():
                console.print(f"[red]Not a file: {file_path}[/red]")
                continue
            content_type = CONTENT_TYPE_BY_SUFFIX.get(file_path.suffix.lower(), "application/octet-stream")
            with open(file_path, 'rb') as f:
                message = lib.upload(owner_id, [(f, file_path.name, content_type)])
            style = "green" if "successfully" in message else "yellow"
            console.print(f"[{style}]{message.strip()}[/{style}]")
    finally:
        lib.close()


@app.command(name="list")
@handle_library_errors
def list_books(
    ctx: typer.Context,
    library_path: Optional[Path] = typer.Option(None, "--library", "-l", help="Library directory (defaults from config)"),
    owner: Optional[int] = typer.Option(None, "--owner", help="Owner id (defaults from config)"),
    page: int = typer.Option(1, "--page", "-p", help="Listing page, newest books first"),
):
    """
    List books, one listing page at a time.

    Examples:
        readshelf list
        readshelf list --page 2
    """
    config = _config(ctx, library_path)
    owner_id = owner if owner is not None else config.server.default_owner_id
    lib = _open_library(config)

    try:
        listing = lib.library_page(owner_id, page)
        if not listing.books:
            console.print("[yellow]No books found[/yellow]")
            return

        table = Table(title=f"Books (page {page} of {listing.total_pages})")
        table.add_column("ID", style="cyan")
        table.add_column("Title", style="green")
        table.add_column("Author", style="blue")
        table.add_column("Format", style="magenta")
        table.add_column("File", style="yellow")

        for book in listing.books:
            table.add_row(str(book.id), book.title[:50], book.author[:30], book.format, book.filename)

        console.print(table)
    finally:
        lib.close()


@app.command()
@handle_library_errors
def search(
    ctx: typer.Context,
    term: str = typer.Argument(..., help="Search term"),
    library_path: Optional[Path] = typer.Option(None, "--library", "-l", help="Library directory (defaults from config)"),
    owner: Optional[int] = typer.Option(None, "--owner", help="Owner id (defaults from config)"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum number of results"),
):
    """
    Search titles and authors, plus page content on the remote index.

    Examples:
        readshelf search "dickens"
        readshelf search "it was the best of times" --limit 5
    """
    config = _config(ctx, library_path)
    owner_id = owner if owner is not None else config.server.default_owner_id
    lib = _open_library(config)

    try:
        results = lib.search(owner_id, term, limit=limit)

        if not results.book_info and not results.book_detail:
            console.print(f"[yellow]No results found for: {term}[/yellow]")
            return

        if results.book_info:
            table = Table(title=f"Books matching '{term}'")
            table.add_column("ID", style="cyan")
            table.add_column("Title", style="green")
            table.add_column("Author", style="blue")
            for hit in results.book_info:
                table.add_row(str(hit.book_id), hit.title[:50], hit.author[:30])
            console.print(table)

        if results.book_detail:
            table = Table(title=f"Pages matching '{term}'")
            table.add_column("Book", style="green")
            table.add_column("Page", style="cyan")
            table.add_column("Snippet")
            for hit in results.book_detail:
                snippet = hit.highlights[0] if hit.highlights else ""
                table.add_row(hit.title[:40], str(hit.page), snippet[:80])
            console.print(table)
    finally:
        lib.close()


@app.command()
@handle_library_errors
def edit(
    ctx: typer.Context,
    filename: str = typer.Argument(..., help="Stored filename, e.g. My_Book.pdf"),
    title: Optional[str] = typer.Option(None, "--title", help="New title"),
    author: Optional[str] = typer.Option(None, "--author", help="New author"),
    cover: Optional[Path] = typer.Option(None, "--cover", help="New cover image"),
    library_path: Optional[Path] = typer.Option(None, "--library", "-l", help="Library directory (defaults from config)"),
    owner: Optional[int] = typer.Option(None, "--owner", help="Owner id (defaults from config)"),
):
    """
    Edit the title, author or cover of a book.

    Example:
        readshelf edit My_Book.pdf --title "My Book" --author "A. Writer"
    """
    config = _config(ctx, library_path)
    owner_id = owner if owner is not None else config.server.default_owner_id
    lib = _open_library(config)

    try:
        book = lib.get_book(owner_id, filename)
        new_title = title if title is not None else book.title
        new_author = author if author is not None else book.author

        if cover is not None:
            with open(cover, 'rb') as f:
                lib.edit_book(owner_id, filename, new_title, new_author,
                              cover_stream=f, cover_filename=cover.name)
        else:
            lib.edit_book(owner_id, filename, new_title, new_author)

        console.print(f"[green]Updated {filename}[/green]")
    finally:
        lib.close()


@app.command()
@handle_library_errors
def delete(
    ctx: typer.Context,
    filename: str = typer.Argument(..., help="Stored filename, e.g. My_Book.pdf"),
    library_path: Optional[Path] = typer.Option(None, "--library", "-l", help="Library directory (defaults from config)"),
    owner: Optional[int] = typer.Option(None, "--owner", help="Owner id (defaults from config)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """
    Delete a book, its reading position and its index documents.
    """
    config = _config(ctx, library_path)
    owner_id = owner if owner is not None else config.server.default_owner_id

    if not yes and not typer.confirm(f"Delete {filename}?"):
        console.print("[yellow]Cancelled[/yellow]")
        return

    lib = _open_library(config)
    try:
        lib.delete_book(owner_id, filename)
        console.print(f"[green]Deleted {filename}[/green]")
    finally:
        lib.close()


@app.command()
def serve(
    ctx: typer.Context,
    library_path: Optional[Path] = typer.Option(None, "--library", "-l", help="Library directory (defaults from config)"),
    host: Optional[str] = typer.Option(None, "--host", help="Host to bind to (defaults from config)"),
    port: Optional[int] = typer.Option(None, "--port", help="Port to bind to (defaults from config)"),
):
    """
    Start the web server.

    Configuration:
        Defaults are loaded from ~/.config/readshelf/config.json and
        READSHELF_* environment variables; command-line options override them.

    Examples:
        readshelf serve
        readshelf serve --library ~/shelf --port 9000
    """
    config = _config(ctx, library_path)
    server_host = host if host is not None else config.server.host
    server_port = port if port is not None else config.server.port

    import uvicorn
    from .server import create_app

    try:
        console.print("[blue]Starting readshelf server...[/blue]")
        console.print(f"[blue]Library: {config.storage.library_root}[/blue]")
        console.print(f"[blue]Search index: {config.index.backend}[/blue]")
        console.print(f"[green]Server running at http://{server_host}:{server_port}[/green]")
        console.print("[dim]Press Ctrl+C to stop[/dim]")

        app_instance = create_app(config)

        uvicorn.run(
            app_instance,
            host=server_host,
            port=server_port,
            log_level="info"
        )

    except KeyboardInterrupt:
        console.print("\n[yellow]Server stopped[/yellow]")
    except Exception as e:
        logger.error(f"Error starting server: {e}", exc_info=True)
        raise typer.Exit(code=1)


@app.command()
def config(
    ctx: typer.Context,
    show: bool = typer.Option(False, "--show", help="Show current configuration"),
    init: bool = typer.Option(False, "--init", help="Initialize config file with defaults"),
    set_library_path: Optional[str] = typer.Option(None, "--library-path", help="Set library directory"),
    set_index_backend: Optional[str] = typer.Option(None, "--index-backend", help="Set search index (local, remote)"),
    set_remote_url: Optional[str] = typer.Option(None, "--remote-url", help="Set remote index address"),
    set_host: Optional[str] = typer.Option(None, "--host", help="Set server host"),
    set_port: Optional[int] = typer.Option(None, "--port", help="Set server port"),
):
    """
    View or edit the configuration file.

    Examples:
        readshelf config --show
        readshelf config --index-backend remote --remote-url http://es:9200
    """
    config_path = (ctx.obj or {}).get("config_file") or get_config_path()

    if init:
        path = save_config(ReadShelfConfig(), config_path)
        console.print(f"[green]Wrote default configuration to {path}[/green]")
        return

    if set_index_backend is not None and set_index_backend not in ("local", "remote"):
        console.print(f"[red]Unknown index backend: {set_index_backend}[/red]")
        raise typer.Exit(code=1)

    current = load_config(config_path, environ={})
    changed = False
    updates = [
        ("storage", "library_path", set_library_path),
        ("index", "backend", set_index_backend),
        ("index", "remote_url", set_remote_url),
        ("server", "host", set_host),
        ("server", "port", set_port),
    ]
    for section, attribute, value in updates:
        if value is not None:
            setattr(getattr(current, section), attribute, value)
            changed = True

    if changed:
        path = save_config(current, config_path)
        console.print(f"[green]Configuration saved to {path}[/green]")

    if show or not changed:
        table = Table(title=f"Configuration ({config_path})")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")
        for section, values in current.to_dict().items():
            for key, value in values.items():
                table.add_row(f"{section}.{key}", str(value))
        console.print(table)


if __name__ == "__main__":
    app()
