"""SQLAlchemy ORM models for the hub."""

from backend.models.base import Base
from backend.models.idea import Idea, IdeaStatus
from backend.models.source import FileRecord, Source, SourceMode
from backend.models.sync import SyncLog
from backend.models.user import ApiKey, User

__all__ = [
    "ApiKey",
    "Base",
    "FileRecord",
    "Idea",
    "IdeaStatus",
    "Source",
    "SourceMode",
    "SyncLog",
    "User",
]
