"""Lending Library - Core Application Package

This package contains the core application modules including:
- API endpoints (api.py)
- Catalog and copy counts (catalog.py)
- Borrow/return state machine (ledger.py)
- Members and bearer tokens (auth.py)
- CLI interface (main.py)
- Data models (book.py, member.py, borrowing.py)
- Database layer (database.py)
"""

__version__ = "1.0.0"
