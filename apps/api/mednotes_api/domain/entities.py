from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

Scope = Literal["mine", "all"]


@dataclass(frozen=True)
class SessionContext:
    user_id: str
    access_token: str
    email: str | None = None


@dataclass(frozen=True)
class NoteRecord:
    id: str
    created_at: datetime
    content: str
    tags: tuple[str, ...] = ()
    is_starred: bool = False
    user_id: str = ""
    secret_url: str | None = None


@dataclass(frozen=True)
class AttachmentRecord:
    note_id: str
    path: str
    media_type: str
    name: str = ""


@dataclass(frozen=True)
class NoteSummary:
    id: str
    created_at: datetime
    content: str
    tags: tuple[str, ...] = ()
    is_starred: bool = False
    user_id: str = ""
    image_paths: tuple[str, ...] = ()
    has_pdf: bool = False


@dataclass(frozen=True)
class FeedQuery:
    scope: Scope = "mine"
    search_term: str = ""
    tag: str | None = None

    @property
    def normalized_term(self) -> str:
        return self.search_term.strip()

    @property
    def normalized_tag(self) -> str | None:
        return self.tag.strip() if self.tag and self.tag.strip() else None

    def signature(self, owner_id: str | None) -> str:
        owner = owner_id if self.scope == "mine" else "*"
        return f"{self.scope}|{owner or ''}|{self.normalized_term}|{self.normalized_tag or ''}"


@dataclass(frozen=True)
class QuizQuestion:
    note_id: str
    question: str
    choices: tuple[str, ...]
    correct: str


@dataclass(frozen=True)
class PatientSummary:
    id: str
    note_id: str
    summary_text: str
    feedback: str | None = None
    user_id: str | None = None


@dataclass(frozen=True)
class SharedNote:
    """A note reached through its public link, with its attachments."""

    note: NoteRecord
    attachments: tuple[AttachmentRecord, ...] = ()


@dataclass(frozen=True)
class Quiz:
    id: str
    questions: tuple[QuizQuestion, ...]
    created_at: datetime | None = None
    user_id: str | None = None
