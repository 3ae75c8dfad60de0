from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from mednotes_api.domain.entities import AttachmentRecord, NoteRecord, NoteSummary, Quiz, QuizQuestion


class NoteSummaryOut(BaseModel):
    id: str
    created_at: datetime
    content: str
    tags: list[str] = Field(default_factory=list)
    is_starred: bool = False
    user_id: str = ""
    image_paths: list[str] = Field(default_factory=list)
    has_pdf: bool = False

    @classmethod
    def from_summary(cls, note: NoteSummary) -> "NoteSummaryOut":
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


class NoteOut(BaseModel):
    id: str
    created_at: datetime
    content: str
    tags: list[str] = Field(default_factory=list)
    is_starred: bool = False
    secret_url: Optional[str] = None

    @classmethod
    def from_record(cls, note: NoteRecord) -> "NoteOut":
        return cls(
            id=note.id,
            created_at=note.created_at,
            content=note.content,
            tags=list(note.tags),
            is_starred=note.is_starred,
            secret_url=note.secret_url,
        )


class FeedOut(BaseModel):
    items: list[NoteSummaryOut] = Field(default_factory=list)


class NoteCreateIn(BaseModel):
    content: str
    tags: list[str] = Field(default_factory=list)


class NoteUpdateIn(BaseModel):
    content: Optional[str] = None
    tags: Optional[list[str]] = None
    is_starred: Optional[bool] = None


class QuizIn(BaseModel):
    note_ids: list[str] = Field(default_factory=list)
    num_questions: int = Field(8, ge=1, le=30)


class QuizQuestionOut(BaseModel):
    note_id: str
    question: str
    choices: list[str]
    correct: str

    @classmethod
    def from_question(cls, q: QuizQuestion) -> "QuizQuestionOut":
        return cls(note_id=q.note_id, question=q.question, choices=list(q.choices), correct=q.correct)


class QuizOut(BaseModel):
    id: str
    provider: str
    questions: list[QuizQuestionOut] = Field(default_factory=list)


class StoredQuizOut(BaseModel):
    id: str
    created_at: Optional[datetime] = None
    questions: list[QuizQuestionOut] = Field(default_factory=list)

    @classmethod
    def from_quiz(cls, quiz: Quiz) -> "StoredQuizOut":
        return cls(id=quiz.id, created_at=quiz.created_at, questions=[QuizQuestionOut.from_question(q) for q in quiz.questions])


class PatientSummaryIn(BaseModel):
    note_id: str
    feedback: Optional[str] = None


class PatientSummaryOut(BaseModel):
    id: str
    summary: str
    source: Literal["stored", "generated"]


class AttachmentOut(BaseModel):
    note_id: str
    path: str
    media_type: str
    name: str = ""

    @classmethod
    def from_record(cls, a: AttachmentRecord) -> "AttachmentOut":
        return cls(note_id=a.note_id, path=a.path, media_type=a.media_type, name=a.name)


class SharedMediaOut(BaseModel):
    name: str
    media_type: str
    url: Optional[str] = None


class SharedNoteOut(BaseModel):
    id: str
    created_at: datetime
    content: str
    tags: list[str] = Field(default_factory=list)
    media: list[SharedMediaOut] = Field(default_factory=list)
