import logging
import subprocess
import sys
from functools import wraps
from typing import Optional

import typer
from rich.console import Console

from lending_library.config import settings
from lending_library.errors import LibraryError, UnauthenticatedError
from lending_library.ledger import days_overdue
from lending_library.library import Library
from lending_library.utils.ui_helpers import (
    print_book_list,
    print_borrowing_list,
    print_stats_result,
    set_output_mode,
)
from lending_library.utils.validators import IdValidator

APP_NAME = "Library CLI"

logger = logging.getLogger(__name__)

console = Console()


class LibraryManager:
    """Lazily created Library shared by the commands of one CLI run."""

    _instance: Optional[Library] = None

    @classmethod
    def get_instance(cls) -> Library:
        if cls._instance is None:
            cls._instance = Library()
        return cls._instance


def handle_library_errors(func):
    """Print library errors as ``Error [CODE]: message`` and exit with status 1.

    Anything else is logged with its traceback and shown as a generic internal error.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except LibraryError as e:
            print(f"Error [{e.code}]: {e.message}")
            raise typer.Exit(code=1)
        except Exception:
            logger.exception("Unexpected error in %s", func.__name__)
            print("Error [INTERNAL_SERVER_ERROR]: Internal server error")
            raise typer.Exit(code=1)
    return wrapper


def _member_for(token: Optional[str]) -> str:
    member_id = LibraryManager.get_instance().members.resolve_token(token)
    if not member_id:
        raise UnauthenticatedError("Not authenticated. Run 'login' and pass --token.")
    return member_id


# --- Typer CLI application ---
app = typer.Typer(help=APP_NAME)

TOKEN_OPTION = typer.Option(None, "--token", "-t", envvar="LIB_CLI_TOKEN", help="Bearer token from 'login'")


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global options for the CLI (e.g. output mode)."""
    logging.basicConfig(level=settings.log_level)
    if output:
        set_output_mode(output)


@app.command("init-db")
def cli_init_db():
    """Create the database schema if it does not exist."""
    lib = LibraryManager.get_instance()
    print(f"Database ready: {lib.db_file}")


@app.command("add-book")
@handle_library_errors
def cli_add_book(
    title: str,
    author: str,
    isbn: str,
    copies: int = typer.Option(1, "--copies", "-c", help="Number of physical copies"),
    category: Optional[str] = typer.Option(None, "--category", help="FICTION, NON_FICTION, SCIENCE, TECHNOLOGY or HISTORY"),
):
    """Catalogue a new book."""
    book = LibraryManager.get_instance().catalog.add_book(title, author, isbn, copies, category)
    print(f"Successfully added: {book.title} by {book.author} (id {book.id})")


@app.command("list")
def cli_list(
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Maximum number of books"),
    offset: int = typer.Option(0, "--offset", help="Books to skip"),
):
    """List all books."""
    print_book_list(LibraryManager.get_instance().catalog.list_books(limit=limit, offset=offset))


@app.command("available")
def cli_available():
    """List books with at least one copy on the shelf."""
    print_book_list(LibraryManager.get_instance().catalog.list_available(), "No books available.")


@app.command("search")
def cli_search(query: str = typer.Argument(..., help="Text to look for in titles and authors")):
    """Search books by title or author."""
    print_book_list(LibraryManager.get_instance().catalog.search(query), f"No books match '{query}'.")


@app.command("find")
@handle_library_errors
def cli_find(book_id: str):
    """Show a single book by id."""
    IdValidator.require_valid_id(book_id, "book")
    book = LibraryManager.get_instance().catalog.find_by_id(book_id)
    print("Book Found")
    print(f"Title: {book.title}")
    print(f"Author: {book.author}")
    print(f"ISBN: {book.isbn}")
    print(f"Copies: {book.available_copies}/{book.total_copies}")


@app.command("register")
@handle_library_errors
def cli_register(
    name: str,
    email: str,
    password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True),
):
    """Register a new member and print their token."""
    member, token = LibraryManager.get_instance().members.register_member(name, email, password)
    print(f"Registered {member.name} ({member.membership_number})")
    print(f"Token: {token}")


@app.command("login")
@handle_library_errors
def cli_login(email: str, password: str = typer.Option(..., prompt=True, hide_input=True)):
    """Log in and print a bearer token."""
    member, token = LibraryManager.get_instance().members.login(email, password)
    print(f"Welcome back, {member.name}")
    print(f"Token: {token}")


@app.command("borrow")
@handle_library_errors
def cli_borrow(book_id: str, token: Optional[str] = TOKEN_OPTION):
    """Borrow a book."""
    IdValidator.require_valid_id(book_id, "book")
    lib = LibraryManager.get_instance()
    borrowing = lib.ledger.borrow(_member_for(token), book_id)
    book = lib.catalog.find_by_id(book_id)
    print(f"Borrowed: {book.title} (borrowing {borrowing.id})")


@app.command("return")
@handle_library_errors
def cli_return(borrowing_id: str, token: Optional[str] = TOKEN_OPTION):
    """Return a borrowed book."""
    IdValidator.require_valid_id(borrowing_id, "borrowing")
    lib = LibraryManager.get_instance()
    borrowing = lib.ledger.return_book(_member_for(token), borrowing_id)
    book = lib.catalog.find_by_id(borrowing.book_id)
    print(f"Returned: {book.title}")


@app.command("loans")
@handle_library_errors
def cli_loans(
    token: Optional[str] = TOKEN_OPTION,
    active: bool = typer.Option(False, "--active", "-a", help="Only open loans"),
):
    """Show your borrowings, most recent first."""
    lib = LibraryManager.get_instance()
    member_id = _member_for(token)
    borrowings = lib.ledger.active_borrowings_for(member_id) if active else lib.ledger.all_borrowings_for(member_id)
    rows = [dict(b.to_dict(), days_overdue=days_overdue(b)) for b in borrowings]
    print_borrowing_list(rows)


@app.command("stats")
def cli_stats():
    """Show library statistics."""
    print_stats_result(LibraryManager.get_instance().get_statistics())


@app.command("serve")
def cli_serve():
    """Start the HTTP API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "lending_library.api:app",
        "--host", host,
        "--port", str(port),
    ]
    try:
        subprocess.run(args, check=False)
    except KeyboardInterrupt:
        console.print("[green]Server stopped.[/]")


if __name__ == "__main__":
    app()
