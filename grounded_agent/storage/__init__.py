from .sqlite import SQLiteMemoryStore

__all__ = ["SQLiteMemoryStore"]
