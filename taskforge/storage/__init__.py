"""Task, epic and dependency persistence."""

from taskforge.storage.base import TaskStore
from taskforge.storage.database import Database
from taskforge.storage.memory import InMemoryTaskStore
from taskforge.storage.sql import SqlTaskStore

__all__ = ["Database", "InMemoryTaskStore", "SqlTaskStore", "TaskStore"]
