from __future__ import annotations

from typing import Any, Protocol, Sequence, runtime_checkable

from mednotes_api.domain.entities import (
    AttachmentRecord,
    NoteRecord,
    PatientSummary,
    Quiz,
    QuizQuestion,
    SessionContext,
    SharedNote,
)


@runtime_checkable
class NoteStore(Protocol):
    async def authenticate(self, token: str) -> SessionContext:
        ...

    async def list_notes(
        self,
        session: SessionContext | None,
        *,
        owner_id: str | None = None,
        search_term: str | None = None,
        tag: str | None = None,
        limit: int = 100,
    ) -> list[NoteRecord]:
        ...

    async def list_attachments(self, session: SessionContext | None, note_ids: Sequence[str]) -> list[AttachmentRecord]:
        ...

    async def get_note(self, session: SessionContext, note_id: str) -> NoteRecord:
        ...

    async def get_notes(self, session: SessionContext, note_ids: Sequence[str]) -> list[NoteRecord]:
        ...

    async def get_shared_note(self, secret_url: str) -> SharedNote:
        ...

    async def create_note(self, session: SessionContext, content: str, tags: Sequence[str]) -> NoteRecord:
        ...

    async def update_note(self, session: SessionContext, note_id: str, fields: dict[str, Any]) -> None:
        ...

    async def delete_note(self, session: SessionContext, note_id: str) -> None:
        ...

    async def attach_media(
        self, session: SessionContext, note_id: str, file_name: str, data: bytes, media_type: str
    ) -> AttachmentRecord:
        ...

    async def find_patient_summary(
        self, session: SessionContext, note_id: str, feedback: str | None
    ) -> PatientSummary | None:
        ...

    async def save_patient_summary(self, session: SessionContext, summary: PatientSummary) -> PatientSummary:
        ...

    async def save_quiz(self, session: SessionContext, questions: Sequence[QuizQuestion]) -> Quiz:
        ...

    async def get_quiz(self, session: SessionContext, quiz_id: str) -> Quiz:
        ...


@runtime_checkable
class MediaSigner(Protocol):
    async def sign_url(self, session: SessionContext | None, path: str, ttl_seconds: int) -> str:
        ...


@runtime_checkable
class SessionStorage(Protocol):
    def get_item(self, key: str) -> str | None:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...

    def keys(self) -> list[str]:
        ...
