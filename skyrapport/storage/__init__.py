"""Local store collaborator: contract, implementations and typed repository."""

from skyrapport.storage.base import LocalStore, MemoryStore
from skyrapport.storage.repository import Repository
from skyrapport.storage.sqlite_store import SQLiteStore

__all__ = ["LocalStore", "MemoryStore", "Repository", "SQLiteStore"]
