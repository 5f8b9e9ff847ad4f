import json
import logging
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from lending_library.errors import InvariantViolation
from lending_library.main import LibraryManager, app
from lending_library.utils.ui_helpers import OUTPUT_MODE_ENV

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_lib(lib, monkeypatch):
    monkeypatch.setattr(LibraryManager, "_instance", lib)
    # --output rewrites this variable; setenv restores it after each test
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")
    monkeypatch.delenv("LIB_CLI_TOKEN", raising=False)
    return lib


def test_list_no_books():
    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_add_book_success(lib):
    result = runner.invoke(app, ["add-book", "Dune", "Frank Herbert", "111", "--copies", "2"])
    assert result.exit_code == 0
    assert "Successfully added: Dune by Frank Herbert" in result.stdout
    assert lib.catalog.find_by_isbn("111").total_copies == 2


def test_add_book_duplicate(lib):
    lib.catalog.add_book("Dune", "Frank Herbert", "111", 1)
    result = runner.invoke(app, ["add-book", "Dune", "Frank Herbert", "111"])
    assert result.exit_code == 1
    assert "Error [ISBN_EXISTS]" in result.stdout


def test_list_json_output(lib):
    book = lib.catalog.add_book("Dune", "Frank Herbert", "111", 2)
    result = runner.invoke(app, ["--output", "json", "list"])
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload[0]["id"] == book.id
    assert payload[0]["available_copies"] == 2


def test_find_book(lib):
    book = lib.catalog.add_book("Found Book", "Finder", "111", 1)
    result = runner.invoke(app, ["find", book.id])
    assert result.exit_code == 0
    assert "Book Found" in result.stdout
    assert "Title: Found Book" in result.stdout
    assert "Copies: 1/1" in result.stdout


def test_find_book_not_found():
    result = runner.invoke(app, ["find", "0" * 32])
    assert result.exit_code == 1
    assert "Error [BOOK_NOT_FOUND]" in result.stdout


def test_borrow_requires_token(lib):
    book = lib.catalog.add_book("Dune", "Frank Herbert", "111", 1)
    result = runner.invoke(app, ["borrow", book.id])
    assert result.exit_code == 1
    assert "Error [UNAUTHENTICATED]" in result.stdout


def test_borrow_loans_and_return(lib, member):
    m, token = member
    book = lib.catalog.add_book("Dune", "Frank Herbert", "111", 1)

    result = runner.invoke(app, ["borrow", book.id, "--token", token])
    assert result.exit_code == 0
    assert "Borrowed: Dune" in result.stdout
    borrowing = lib.ledger.active_borrowings_for(m.id)[0]

    result = runner.invoke(app, ["loans", "--active"], env={"LIB_CLI_TOKEN": token})
    assert result.exit_code == 0
    assert borrowing.id in result.stdout
    assert "ACTIVE" in result.stdout

    result = runner.invoke(app, ["return", borrowing.id, "--token", token])
    assert result.exit_code == 0
    assert "Returned: Dune" in result.stdout
    assert lib.catalog.find_by_id(book.id).available_copies == 1

    result = runner.invoke(app, ["return", borrowing.id, "--token", token])
    assert result.exit_code == 1
    assert "Error [ALREADY_RETURNED]" in result.stdout


def test_register_and_login(lib):
    result = runner.invoke(app, ["register", "Grace Hopper", "grace@example.com"], input="cobol1959\ncobol1959\n")
    assert result.exit_code == 0
    assert "Registered Grace Hopper (MEM" in result.stdout

    result = runner.invoke(app, ["login", "grace@example.com", "--password", "cobol1959"])
    assert result.exit_code == 0
    token = result.stdout.strip().splitlines()[-1].removeprefix("Token: ")
    assert lib.members.resolve_token(token) == lib.members.get_member_by_email("grace@example.com").id


def test_stats(lib):
    lib.catalog.add_book("Dune", "Frank Herbert", "111", 2)
    result = runner.invoke(app, ["stats"])
    assert result.exit_code == 0
    assert "Total Books: 1" in result.stdout
    assert "Available Copies: 2" in result.stdout


@patch("subprocess.run")
def test_serve_command(mock_subprocess_run):
    result = runner.invoke(app, ["serve"])
    assert result.exit_code == 0
    assert "Starting API on" in result.stdout
    mock_subprocess_run.assert_called_once()
    args = mock_subprocess_run.call_args[0][0]
    assert "uvicorn" in args
    assert "lending_library.api:app" in args
    assert "--host" in args
    assert "--port" in args


@pytest.mark.parametrize("command", [
    ["find", "not-an-id"],
    ["borrow", "not-an-id"],
    ["return", "ABC"],
])
def test_malformed_ids_are_rejected_before_lookup(lib, member, command):
    _, token = member
    args = command + (["--token", token] if command[0] != "find" else [])
    result = runner.invoke(app, args)
    assert result.exit_code == 1
    assert "Error [INVALID_ID]" in result.stdout


def test_unexpected_errors_are_logged_and_masked(lib, member, monkeypatch, caplog):
    _, token = member
    book = lib.catalog.add_book("Dune", "Frank Herbert", "111", 1)

    def broken_borrow(member_id, book_id):
        raise InvariantViolation("copy count for book went out of range")

    monkeypatch.setattr(lib.ledger, "borrow", broken_borrow)
    with caplog.at_level(logging.ERROR, logger="lending_library.main"):
        result = runner.invoke(app, ["borrow", book.id, "--token", token])

    assert result.exit_code == 1
    assert "Error [INTERNAL_SERVER_ERROR]: Internal server error" in result.stdout
    assert "out of range" not in result.stdout
    assert any(r.exc_info and r.exc_info[0] is InvariantViolation for r in caplog.records)
