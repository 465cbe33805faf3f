"""Settings persistence."""
from .connection import Database, Settings, DEFAULT_DB_PATH

__all__ = ["Database", "Settings", "DEFAULT_DB_PATH"]
