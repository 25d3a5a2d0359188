"""
netledger Database Package

Database layer with dual SQLite and PostgreSQL support.
"""

from netledger.db.database import (
    Database,
    DatabaseProtocol,
    SQLiteDatabase,
    PostgresDatabase,
    get_database,
    utcnow,
)
from netledger.db.schema import SCHEMA_SQLITE, SCHEMA_POSTGRES

__all__ = [
    "Database",
    "DatabaseProtocol",
    "SQLiteDatabase",
    "PostgresDatabase",
    "get_database",
    "utcnow",
    "SCHEMA_SQLITE",
    "SCHEMA_POSTGRES",
]
