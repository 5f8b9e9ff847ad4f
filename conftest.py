import os
import tempfile

# Point the default database at a throwaway file before the package reads its settings
os.environ.setdefault("LIBRARY_DB_FILE", os.path.join(tempfile.gettempdir(), f"lending_test_{os.getpid()}.db"))

import pytest

from lending_library.library import Library


@pytest.fixture
def lib(tmp_path, request):
    # Create a unique database file for each test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    lib = Library(db_file=db_file)
    yield lib
    lib.close()


@pytest.fixture
def member(lib):
    """A registered member as (member, token)."""
    return lib.members.register_member("Ada Lovelace", "ada@example.com", "secret123")


@pytest.fixture
def other_member(lib):
    return lib.members.register_member("Alan Turing", "alan@example.com", "secret456")
