import logging
from typing import Any, Dict, Optional

from lending_library import database
from lending_library.auth import MemberService
from lending_library.catalog import Catalog
from lending_library.database import initialize_database
from lending_library.ledger import Ledger

logger = logging.getLogger(__name__)


class Library:
    """Catalog, lending ledger and members sharing one database file."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file or database.DATABASE_FILE
        # Make sure the schema is current on every start
        initialize_database(self.db_file)
        self.catalog = Catalog(self.db_file)
        self.ledger = Ledger(self.catalog, self.db_file)
        self.members = MemberService(self.db_file)

    def get_statistics(self) -> Dict[str, Any]:
        stats = self.catalog.get_statistics()
        stats["total_members"] = self.members.count_members()
        stats["active_borrowings"] = self.ledger.count_active()
        return stats

    def close(self) -> None:
        """Log the shutdown. Every operation opens and closes its own connection, so nothing stays open."""
        logger.debug("Library on %s closed", self.db_file)
