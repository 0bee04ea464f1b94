"""
Database package: SQLAlchemy tables and engine/session configuration for
the SQL row store.
"""

from .models import (
    Base,
    Sheet,
    SheetRow,
    create_all_tables,
    drop_all_tables
)

from .config import (
    DatabaseConfig,
    get_database_config,
    initialize_database,
    get_db_session_context
)

__all__ = [
    # Models
    'Base',
    'Sheet',
    'SheetRow',
    'create_all_tables',
    'drop_all_tables',

    # Configuration
    'DatabaseConfig',
    'get_database_config',
    'initialize_database',
    'get_db_session_context',
]
