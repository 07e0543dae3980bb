from .filesystem import FilesystemStore
from .sqlite import SQLiteStore

__all__ = ["FilesystemStore", "SQLiteStore"]
