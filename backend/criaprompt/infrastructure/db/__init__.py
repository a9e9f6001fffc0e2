"""
Database Infrastructure Package for CriaPrompt

Exports database utilities and dependency providers.
"""

from criaprompt.infrastructure.db.database import (
    DatabaseManager,
    get_db_manager,
    get_session,
    init_db,
    close_db,
)


__all__ = [
    # Database management
    "DatabaseManager",
    "get_db_manager",
    "get_session",
    "init_db",
    "close_db",
]
