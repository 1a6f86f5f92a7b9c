"""
Database module.
Contains database connection, models, and the document store adapter.
"""

from docqueue.db.connection import (
    AsyncSessionLocal,
    close_db,
    get_engine,
    get_store,
    init_db,
)
from docqueue.db.models import Base, Message
from docqueue.db.store import DocumentStore

__all__ = [
    "get_engine",
    "get_store",
    "init_db",
    "close_db",
    "AsyncSessionLocal",
    "DocumentStore",
    "Message",
    "Base",
]
