from repairdesk.db.base import Base
from repairdesk.db.session import Database, database, get_db, init_db

__all__ = ["Base", "Database", "database", "get_db", "init_db"]
