"""Storage backends for attributes, policies and access request records."""
from .memory import InMemoryABACStore
from .database import DatabaseManager
from .sql_store import SQLAlchemyABACStore

__all__ = ["InMemoryABACStore", "DatabaseManager", "SQLAlchemyABACStore"]
