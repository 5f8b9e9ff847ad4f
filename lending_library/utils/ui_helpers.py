import os
import json
from typing import Any, Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_book_list(books: List[Any], empty_message: str = "No books in library.") -> None:
    """Print books in the current output mode.
    - plain: 'id - Title by Author [available/total]' lines
    - json: JSON array of book dicts
    - rich: Rich table
    """
    if not books:
        print(empty_message)
        return

    mode = get_output_mode()
    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="dim", no_wrap=True)
        table.add_column("ISBN", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Copies", justify="right")
        for b in books:
            table.add_row(b.id, b.isbn, b.title, b.author, f"{b.available_copies}/{b.total_copies}")
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author} [{b.available_copies}/{b.total_copies}]")


def print_borrowing_list(rows: List[Dict[str, Any]], empty_message: str = "No borrowings.") -> None:
    """Print borrowings (dicts carrying ``days_overdue``) in the current output mode."""
    if not rows:
        print(empty_message)
        return

    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(rows, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📖 Borrowings", header_style="bold cyan")
        table.add_column("ID", style="dim", no_wrap=True)
        table.add_column("Book", no_wrap=True)
        table.add_column("Borrowed")
        table.add_column("State")
        table.add_column("Overdue", justify="right")
        for r in rows:
            state = "[green]RETURNED[/]" if r["returned"] else "[yellow]ACTIVE[/]"
            table.add_row(r["id"], r["book_id"], r["borrow_date"][:10], state, str(r["days_overdue"]))
        _console.print(table)
    else:
        for r in rows:
            state = "RETURNED" if r["returned"] else "ACTIVE"
            print(f"{r['id']} - book {r['book_id']} borrowed {r['borrow_date'][:10]} {state} overdue={r['days_overdue']}")


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print statistics in the current output mode."""
    if not stats:
        print("No statistics available.")
        return

    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{k.replace('_', ' ').title()}:[/] {v}" for k, v in stats.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for k, v in stats.items():
            print(f"{k.replace('_', ' ').title()}: {v}")
