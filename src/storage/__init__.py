"""Storage layer for crawled hashtags."""

from src.storage.database import Database
from src.storage.repository import HashtagRepository

__all__ = ["Database", "HashtagRepository"]
