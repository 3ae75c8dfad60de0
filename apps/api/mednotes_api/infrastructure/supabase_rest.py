from __future__ import annotations

import logging
import uuid
from typing import Any, Sequence
from urllib.parse import quote

import httpx

from mednotes_api.domain.entities import (
    AttachmentRecord,
    NoteRecord,
    PatientSummary,
    Quiz,
    QuizQuestion,
    SessionContext,
    SharedNote,
)
from mednotes_api.domain.exceptions import AuthorizationError, FeedError, StorageError, TransientFetchError
from mednotes_api.util import normalize_tags, parse_rfc3339

logger = logging.getLogger("mednotes.store")

NOTE_COLUMNS = "id,created_at,content,tags,is_starred,user_id"
OWNED_NOTE_COLUMNS = NOTE_COLUMNS + ",secret_url"
MEDIA_COLUMNS = "post_id,file_path,file_type,file_name"


def _join_base(base_url: str, path: str) -> str:
    return base_url.rstrip("/") + "/" + path.lstrip("/")


def _quote_array_item(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def note_from_row(row: dict[str, Any]) -> NoteRecord:
    return NoteRecord(
        id=str(row["id"]),
        created_at=parse_rfc3339(str(row["created_at"])),
        content=row.get("content") or "",
        tags=normalize_tags(row.get("tags")),
        is_starred=bool(row.get("is_starred")),
        user_id=str(row.get("user_id") or ""),
        secret_url=row.get("secret_url"),
    )


def _attachment_from_row(row: dict[str, Any]) -> AttachmentRecord:
    return AttachmentRecord(
        note_id=str(row.get("post_id") or ""),
        path=str(row.get("file_path") or ""),
        media_type=str(row.get("file_type") or ""),
        name=str(row.get("file_name") or ""),
    )


def _quiz_from_row(row: dict[str, Any]) -> Quiz:
    questions = []
    for q in row.get("questions") or []:
        if not isinstance(q, dict):
            continue
        questions.append(
            QuizQuestion(
                note_id=str(q.get("noteId") or ""),
                question=str(q.get("question") or ""),
                choices=tuple(str(c) for c in q.get("choices") or ()),
                correct=str(q.get("correct") or ""),
            )
        )
    created = row.get("created_at")
    return Quiz(
        id=str(row["id"]),
        questions=tuple(questions),
        created_at=parse_rfc3339(str(created)) if created else None,
        user_id=row.get("user_id"),
    )


def _summary_from_row(row: dict[str, Any]) -> PatientSummary:
    return PatientSummary(
        id=str(row["id"]),
        note_id=str(row["post_id"]),
        summary_text=row.get("summary_text") or "",
        feedback=row.get("feedback"),
        user_id=row.get("user_id"),
    )


class SupabaseRestStore:
    """
    NoteStore and MediaSigner over the hosted backend's REST endpoints.

    Every call carries the caller's access token so row-level policies decide
    visibility. HTTP failures are mapped onto the feed error taxonomy.
    """

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        *,
        bucket: str = "post-media",
        timeout_s: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url
        self.anon_key = anon_key
        self.bucket = bucket
        self.timeout_s = timeout_s
        self._client = client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        session: SessionContext | None,
        params: dict[str, str] | None = None,
        json: Any = None,
        content: bytes | None = None,
        content_type: str | None = None,
        prefer: str | None = None,
        bearer: str | None = None,
        allow: tuple[int, ...] = (),
    ) -> httpx.Response:
        url = _join_base(self.base_url, path)
        token = bearer or (session.access_token if session else self.anon_key)
        headers = {"apikey": self.anon_key, "Authorization": f"Bearer {token}"}
        if prefer:
            headers["Prefer"] = prefer
        if content_type:
            headers["Content-Type"] = content_type
        try:
            if self._client is not None:
                resp = await self._client.request(method, url, params=params, json=json, content=content, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                    resp = await client.request(method, url, params=params, json=json, content=content, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("store_request_failed", extra={"method": method, "path": path, "error": type(e).__name__})
            raise TransientFetchError("store_request_failed") from e

        if resp.status_code in allow:
            return resp
        if resp.status_code in (401, 403, 404):
            raise AuthorizationError("note_not_found")
        if resp.status_code >= 400:
            logger.warning("store_http_error", extra={"method": method, "path": path, "status": resp.status_code})
            raise TransientFetchError(f"store_http_{resp.status_code}")
        return resp

    def _rows(self, resp: httpx.Response) -> list[dict[str, Any]]:
        try:
            data = resp.json()
        except ValueError as e:
            raise TransientFetchError("store_bad_response") from e
        if not isinstance(data, list):
            raise TransientFetchError("store_bad_response")
        return [r for r in data if isinstance(r, dict)]

    async def authenticate(self, token: str) -> SessionContext:
        resp = await self._request("GET", "/auth/v1/user", session=None, bearer=token)
        data = resp.json()
        user_id = data.get("id") if isinstance(data, dict) else None
        if not user_id:
            raise AuthorizationError("unauthorized")
        return SessionContext(user_id=str(user_id), access_token=token, email=data.get("email"))

    async def list_notes(
        self,
        session: SessionContext | None,
        *,
        owner_id: str | None = None,
        search_term: str | None = None,
        tag: str | None = None,
        limit: int = 100,
    ) -> list[NoteRecord]:
        params = {"select": NOTE_COLUMNS, "order": "created_at.desc,id.asc", "limit": str(limit)}
        if owner_id:
            params["user_id"] = f"eq.{owner_id}"
        if search_term:
            # websearch_to_tsquery over the generated, GIN-indexed `fts` column.
            params["fts"] = f"wfts.{search_term}"
        if tag:
            params["tags"] = "cs.{" + _quote_array_item(tag) + "}"
        resp = await self._request("GET", "/rest/v1/posts", session=session, params=params)
        return [note_from_row(r) for r in self._rows(resp)]

    async def list_attachments(self, session: SessionContext | None, note_ids: Sequence[str]) -> list[AttachmentRecord]:
        if not note_ids:
            return []
        params = {"select": MEDIA_COLUMNS, "post_id": "in.(" + ",".join(note_ids) + ")"}
        resp = await self._request("GET", "/rest/v1/media_files", session=session, params=params)
        return [_attachment_from_row(r) for r in self._rows(resp)]

    async def get_note(self, session: SessionContext, note_id: str) -> NoteRecord:
        params = {"select": NOTE_COLUMNS, "id": f"eq.{note_id}", "limit": "1"}
        rows = self._rows(await self._request("GET", "/rest/v1/posts", session=session, params=params))
        if not rows:
            raise AuthorizationError("note_not_found")
        return note_from_row(rows[0])

    async def get_notes(self, session: SessionContext, note_ids: Sequence[str]) -> list[NoteRecord]:
        if not note_ids:
            return []
        params = {"select": NOTE_COLUMNS, "id": "in.(" + ",".join(note_ids) + ")"}
        rows = self._rows(await self._request("GET", "/rest/v1/posts", session=session, params=params))
        return [note_from_row(r) for r in rows]

    async def get_shared_note(self, secret_url: str) -> SharedNote:
        # Anonymous read; the row policy admits a post by its secret.
        params = {"select": NOTE_COLUMNS, "secret_url": f"eq.{secret_url}", "limit": "1"}
        rows = self._rows(await self._request("GET", "/rest/v1/posts", session=None, params=params))
        if not rows:
            raise AuthorizationError("note_not_found")
        note = note_from_row(rows[0])
        media = self._rows(
            await self._request(
                "GET",
                "/rest/v1/media_files",
                session=None,
                params={"select": MEDIA_COLUMNS, "post_id": f"eq.{note.id}", "order": "uploaded_at.asc"},
            )
        )
        return SharedNote(note=note, attachments=tuple(_attachment_from_row(r) for r in media))

    async def create_note(self, session: SessionContext, content: str, tags: Sequence[str]) -> NoteRecord:
        payload = {
            "content": content,
            "tags": list(tags),
            "user_id": session.user_id,
            "secret_url": str(uuid.uuid4()),
        }
        resp = await self._request(
            "POST",
            "/rest/v1/posts",
            session=session,
            params={"select": OWNED_NOTE_COLUMNS},
            json=payload,
            prefer="return=representation",
        )
        rows = self._rows(resp)
        if not rows:
            raise TransientFetchError("store_bad_response")
        return note_from_row(rows[0])

    async def update_note(self, session: SessionContext, note_id: str, fields: dict[str, Any]) -> None:
        resp = await self._request(
            "PATCH",
            "/rest/v1/posts",
            session=session,
            params={"id": f"eq.{note_id}", "user_id": f"eq.{session.user_id}", "select": "id"},
            json=fields,
            prefer="return=representation",
        )
        if not self._rows(resp):
            raise AuthorizationError("note_not_found")

    async def delete_note(self, session: SessionContext, note_id: str) -> None:
        owned = {"id": f"eq.{note_id}", "user_id": f"eq.{session.user_id}"}
        rows = self._rows(
            await self._request("GET", "/rest/v1/posts", session=session, params={"select": "id", **owned})
        )
        if not rows:
            raise AuthorizationError("note_not_found")

        media = self._rows(
            await self._request(
                "GET",
                "/rest/v1/media_files",
                session=session,
                params={"select": "file_path", "post_id": f"eq.{note_id}"},
            )
        )
        paths = [str(m["file_path"]) for m in media if m.get("file_path")]
        if paths:
            await self._request("DELETE", f"/storage/v1/object/{self.bucket}", session=session, json={"prefixes": paths})
        await self._request("DELETE", "/rest/v1/media_files", session=session, params={"post_id": f"eq.{note_id}"})
        await self._request("DELETE", "/rest/v1/posts", session=session, params=owned)
        logger.info("note_delete", extra={"id": note_id, "media": len(paths)})

    async def attach_media(
        self, session: SessionContext, note_id: str, file_name: str, data: bytes, media_type: str
    ) -> AttachmentRecord:
        owned = {"select": "id", "id": f"eq.{note_id}", "user_id": f"eq.{session.user_id}"}
        if not self._rows(await self._request("GET", "/rest/v1/posts", session=session, params=owned)):
            raise AuthorizationError("note_not_found")

        path = f"{session.user_id}/{note_id}/{uuid.uuid4()}-{file_name}"
        try:
            # 409: the object already exists, which a retried upload may hit.
            await self._request(
                "POST",
                f"/storage/v1/object/{self.bucket}/{quote(path, safe='/')}",
                session=session,
                content=data,
                content_type=media_type,
                allow=(409,),
            )
        except TransientFetchError as e:
            raise StorageError(f"upload_failed:{file_name}") from e

        payload = {
            "post_id": note_id,
            "user_id": session.user_id,
            "file_path": path,
            "file_name": file_name,
            "file_type": media_type,
        }
        rows = self._rows(
            await self._request(
                "POST",
                "/rest/v1/media_files",
                session=session,
                params={"select": MEDIA_COLUMNS},
                json=payload,
                prefer="return=representation",
            )
        )
        logger.info("media_attach", extra={"id": note_id, "bytes": len(data), "type": media_type})
        return _attachment_from_row(rows[0]) if rows else AttachmentRecord(note_id, path, media_type, file_name)

    async def find_patient_summary(
        self, session: SessionContext, note_id: str, feedback: str | None
    ) -> PatientSummary | None:
        params = {
            "select": "id,post_id,user_id,summary_text,feedback",
            "post_id": f"eq.{note_id}",
            "feedback": f"eq.{feedback}" if feedback else "is.null",
            "order": "created_at.desc",
            "limit": "1",
        }
        rows = self._rows(await self._request("GET", "/rest/v1/patient_summaries", session=session, params=params))
        return _summary_from_row(rows[0]) if rows else None

    async def save_patient_summary(self, session: SessionContext, summary: PatientSummary) -> PatientSummary:
        payload = {
            "post_id": summary.note_id,
            "user_id": summary.user_id,
            "summary_text": summary.summary_text,
            "feedback": summary.feedback,
        }
        resp = await self._request(
            "POST",
            "/rest/v1/patient_summaries",
            session=session,
            json=payload,
            prefer="return=representation",
        )
        rows = self._rows(resp)
        if not rows:
            raise TransientFetchError("store_bad_response")
        return _summary_from_row(rows[0])

    async def save_quiz(self, session: SessionContext, questions: Sequence[QuizQuestion]) -> Quiz:
        payload = {
            "user_id": session.user_id,
            "questions": [
                {"noteId": q.note_id, "question": q.question, "choices": list(q.choices), "correct": q.correct}
                for q in questions
            ],
        }
        resp = await self._request(
            "POST",
            "/rest/v1/quizzes",
            session=session,
            params={"select": "id,created_at,user_id,questions"},
            json=payload,
            prefer="return=representation",
        )
        rows = self._rows(resp)
        if not rows:
            raise TransientFetchError("store_bad_response")
        return _quiz_from_row(rows[0])

    async def get_quiz(self, session: SessionContext, quiz_id: str) -> Quiz:
        params = {"select": "id,created_at,user_id,questions", "id": f"eq.{quiz_id}", "limit": "1"}
        rows = self._rows(await self._request("GET", "/rest/v1/quizzes", session=session, params=params))
        if not rows:
            raise AuthorizationError("quiz_not_found")
        return _quiz_from_row(rows[0])

    async def sign_url(self, session: SessionContext | None, path: str, ttl_seconds: int) -> str:
        object_path = quote(path.lstrip("/"), safe="/")
        try:
            resp = await self._request(
                "POST",
                f"/storage/v1/object/sign/{self.bucket}/{object_path}",
                session=session,
                json={"expiresIn": ttl_seconds},
            )
            data = resp.json()
        except (FeedError, ValueError) as e:
            raise StorageError(f"sign_failed:{path}") from e
        signed = data.get("signedURL") or data.get("signedUrl") if isinstance(data, dict) else None
        if not signed:
            raise StorageError(f"sign_failed:{path}")
        if signed.startswith("http"):
            return signed
        return _join_base(self.base_url, "/storage/v1/" + signed.lstrip("/"))
