from __future__ import annotations

import asyncio
import dataclasses
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

from mednotes_api.domain.entities import (
    AttachmentRecord,
    NoteRecord,
    NoteSummary,
    PatientSummary,
    Quiz,
    QuizQuestion,
    SessionContext,
    SharedNote,
)
from mednotes_api.domain.exceptions import AuthorizationError, StorageError

EPOCH = datetime(2024, 5, 1, tzinfo=timezone.utc)
ALICE = SessionContext(user_id="alice", access_token="tok-alice", email="alice@example.org")
BOB = SessionContext(user_id="bob", access_token="tok-bob")


def record(note_id: str, t: int, content: str = "", *, tags: Sequence[str] = (), starred: bool = False, user: str = "alice") -> NoteRecord:
    return NoteRecord(
        id=note_id,
        created_at=EPOCH + timedelta(seconds=t),
        content=content or f"note {note_id}",
        tags=tuple(tags),
        is_starred=starred,
        user_id=user,
    )


def summary(note_id: str, t: int, **kwargs: Any) -> NoteSummary:
    r = record(note_id, t, **kwargs)
    return NoteSummary(id=r.id, created_at=r.created_at, content=r.content, tags=r.tags, is_starred=r.is_starred, user_id=r.user_id)


class FakeNoteStore:
    def __init__(self, notes: Sequence[NoteRecord] = (), attachments: Sequence[AttachmentRecord] = ()) -> None:
        self.notes: dict[str, NoteRecord] = {n.id: n for n in notes}
        self.attachments = list(attachments)
        self.sessions = {s.access_token: s for s in (ALICE, BOB)}
        self.summaries: list[PatientSummary] = []
        self.quizzes: dict[str, Quiz] = {}
        self.uploads: dict[str, bytes] = {}

        self.list_calls: list[dict] = []
        self.attachment_calls: list[list[str]] = []
        self.updates: list[tuple[str, dict]] = []
        self.deletes: list[str] = []
        self.get_notes_calls: list[list[str]] = []

        self.fail_list: Exception | None = None
        self.fail_attachments: Exception | None = None
        self.fail_update: Exception | None = None
        self.fail_delete: Exception | None = None
        self.list_gates: dict[str, asyncio.Event] = {}
        self.mutation_gate: asyncio.Event | None = None

    def add(self, *notes: NoteRecord) -> None:
        for n in notes:
            self.notes[n.id] = n

    async def authenticate(self, token: str) -> SessionContext:
        session = self.sessions.get(token)
        if session is None:
            raise AuthorizationError("unauthorized")
        return session

    async def list_notes(
        self,
        session: SessionContext | None,
        *,
        owner_id: str | None = None,
        search_term: str | None = None,
        tag: str | None = None,
        limit: int = 100,
    ) -> list[NoteRecord]:
        self.list_calls.append({"owner_id": owner_id, "search_term": search_term, "tag": tag, "limit": limit})
        gate = self.list_gates.get(search_term or "")
        if gate is not None:
            await gate.wait()
        await asyncio.sleep(0)
        if self.fail_list is not None:
            raise self.fail_list
        rows = list(self.notes.values())
        if owner_id:
            rows = [r for r in rows if r.user_id == owner_id]
        if tag:
            rows = [r for r in rows if tag in r.tags]
        if search_term:
            words = search_term.lower().split()
            rows = [r for r in rows if all(w in r.content.lower() for w in words)]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return rows[:limit]

    async def list_attachments(self, session: SessionContext | None, note_ids: Sequence[str]) -> list[AttachmentRecord]:
        self.attachment_calls.append(list(note_ids))
        if self.fail_attachments is not None:
            raise self.fail_attachments
        wanted = set(note_ids)
        return [a for a in self.attachments if a.note_id in wanted]

    async def get_note(self, session: SessionContext, note_id: str) -> NoteRecord:
        note = self.notes.get(note_id)
        if note is None:
            raise AuthorizationError("note_not_found")
        return note

    async def get_notes(self, session: SessionContext, note_ids: Sequence[str]) -> list[NoteRecord]:
        self.get_notes_calls.append(list(note_ids))
        return [self.notes[i] for i in note_ids if i in self.notes]

    async def get_shared_note(self, secret_url: str) -> SharedNote:
        for note in self.notes.values():
            if note.secret_url and note.secret_url == secret_url:
                return SharedNote(note=note, attachments=tuple(a for a in self.attachments if a.note_id == note.id))
        raise AuthorizationError("note_not_found")

    async def attach_media(
        self, session: SessionContext, note_id: str, file_name: str, data: bytes, media_type: str
    ) -> AttachmentRecord:
        note = self.notes.get(note_id)
        if note is None or note.user_id != session.user_id:
            raise AuthorizationError("note_not_found")
        attachment = AttachmentRecord(note_id, f"{session.user_id}/{note_id}/{file_name}", media_type, file_name)
        self.uploads[attachment.path] = data
        self.attachments.append(attachment)
        return attachment

    async def create_note(self, session: SessionContext, content: str, tags: Sequence[str]) -> NoteRecord:
        note = record(f"n{len(self.notes) + 1}", 1000 + len(self.notes), content, tags=tags, user=session.user_id)
        note = dataclasses.replace(note, secret_url=f"secret-{note.id}")
        self.notes[note.id] = note
        return note

    async def update_note(self, session: SessionContext, note_id: str, fields: dict[str, Any]) -> None:
        self.updates.append((note_id, dict(fields)))
        if self.mutation_gate is not None:
            await self.mutation_gate.wait()
        await asyncio.sleep(0)
        if self.fail_update is not None:
            raise self.fail_update
        note = self.notes.get(note_id)
        if note is None or note.user_id != session.user_id:
            raise AuthorizationError("note_not_found")
        if "tags" in fields:
            fields = {**fields, "tags": tuple(fields["tags"])}
        self.notes[note_id] = dataclasses.replace(note, **fields)

    async def delete_note(self, session: SessionContext, note_id: str) -> None:
        self.deletes.append(note_id)
        if self.mutation_gate is not None:
            await self.mutation_gate.wait()
        await asyncio.sleep(0)
        if self.fail_delete is not None:
            raise self.fail_delete
        note = self.notes.get(note_id)
        if note is None or note.user_id != session.user_id:
            raise AuthorizationError("note_not_found")
        del self.notes[note_id]

    async def find_patient_summary(self, session: SessionContext, note_id: str, feedback: str | None) -> PatientSummary | None:
        for s in reversed(self.summaries):
            if s.note_id == note_id and s.feedback == feedback:
                return s
        return None

    async def save_patient_summary(self, session: SessionContext, summary: PatientSummary) -> PatientSummary:
        saved = dataclasses.replace(summary, id=f"ps{len(self.summaries) + 1}")
        self.summaries.append(saved)
        return saved

    async def save_quiz(self, session: SessionContext, questions: Sequence[QuizQuestion]) -> Quiz:
        quiz = Quiz(id=f"q{len(self.quizzes) + 1}", questions=tuple(questions), created_at=EPOCH, user_id=session.user_id)
        self.quizzes[quiz.id] = quiz
        return quiz

    async def get_quiz(self, session: SessionContext, quiz_id: str) -> Quiz:
        quiz = self.quizzes.get(quiz_id)
        if quiz is None or quiz.user_id != session.user_id:
            raise AuthorizationError("quiz_not_found")
        return quiz


class FakeSigner:
    def __init__(self, *, failing: Sequence[str] = (), delay: float = 0.0) -> None:
        self.calls: list[str] = []
        self.failing = set(failing)
        self.delay = delay

    async def sign_url(self, session: SessionContext | None, path: str, ttl_seconds: int) -> str:
        self.calls.append(path)
        await asyncio.sleep(self.delay)
        if path in self.failing:
            raise StorageError(f"sign_failed:{path}")
        return f"https://cdn.example.org/{path}?ttl={ttl_seconds}&n={len(self.calls)}"


class FakeContainer:
    def __init__(self, children: int = 0) -> None:
        self.children = children
        self.scrolled: list[int] = []

    def child_count(self) -> int:
        return self.children

    def scroll_to(self, offset: int) -> None:
        self.scrolled.append(offset)
