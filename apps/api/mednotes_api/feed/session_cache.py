from __future__ import annotations

import logging
from datetime import datetime

from pydantic import BaseModel, Field, ValidationError

from mednotes_api.domain.entities import NoteSummary
from mednotes_api.domain.ports import SessionStorage
from mednotes_api.util import rfc3339_now

logger = logging.getLogger("mednotes.feed")


class MemorySessionStorage:
    """Tab-lifetime key/value store; the process-wide default."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)


class CachedNote(BaseModel):
    id: str
    created_at: datetime
    content: str
    tags: list[str] = Field(default_factory=list)
    is_starred: bool = False
    user_id: str = ""
    image_paths: list[str] = Field(default_factory=list)
    has_pdf: bool = False

    @classmethod
    def from_summary(cls, note: NoteSummary) -> "CachedNote":
        return cls(
            id=note.id,
            created_at=note.created_at,
            content=note.content,
            tags=list(note.tags),
            is_starred=note.is_starred,
            user_id=note.user_id,
            image_paths=list(note.image_paths),
            has_pdf=note.has_pdf,
        )

    def to_summary(self) -> NoteSummary:
        return NoteSummary(
            id=self.id,
            created_at=self.created_at,
            content=self.content,
            tags=tuple(self.tags),
            is_starred=self.is_starred,
            user_id=self.user_id,
            image_paths=tuple(self.image_paths),
            has_pdf=self.has_pdf,
        )


class CachedFeedEntry(BaseModel):
    key: str
    saved_at: str
    notes: list[CachedNote] = Field(default_factory=list)


class SessionFeedCache:
    PREFIX = "feed:snapshot:"

    def __init__(self, storage: SessionStorage) -> None:
        self.storage = storage

    def save(self, key: str, snapshot: list[NoteSummary]) -> None:
        entry = CachedFeedEntry(key=key, saved_at=rfc3339_now(), notes=[CachedNote.from_summary(n) for n in snapshot])
        self.storage.set_item(self.PREFIX + key, entry.model_dump_json())

    def load(self, key: str) -> list[NoteSummary] | None:
        raw = self.storage.get_item(self.PREFIX + key)
        if raw is None:
            return None
        try:
            entry = CachedFeedEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning("feed_cache_corrupt", extra={"key": key})
            self.storage.remove_item(self.PREFIX + key)
            return None
        if entry.key != key:
            return None
        return [n.to_summary() for n in entry.notes]

    def clear(self) -> None:
        for k in self.storage.keys():
            if k.startswith("feed:"):
                self.storage.remove_item(k)
