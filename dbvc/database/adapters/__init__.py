"""
Storage adapters for the database version control engine.
"""

from .base import (
    DatabaseAdapter,
    DatabaseConnection,
    DocumentStore,
    QueryResult,
    TransactionContext,
)
from .memory import InMemoryDocumentStore
from .mongodb import MongoDocumentStore
from .sqlite import SQLiteAdapter, split_sql_script

__all__ = [
    'DatabaseAdapter',
    'DatabaseConnection',
    'DocumentStore',
    'QueryResult',
    'TransactionContext',
    'InMemoryDocumentStore',
    'MongoDocumentStore',
    'SQLiteAdapter',
    'split_sql_script',
]
