from .reading_store import BoundedReadingStore, JsonLogFile, PersistenceError

__all__ = ["BoundedReadingStore", "JsonLogFile", "PersistenceError"]
