import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, Response, UploadFile

from mednotes_api.ai.openai_compat import openai_chat_completion
from mednotes_api.ai.patient_summary import build_patient_summary_messages, eligible_for_patient_summary
from mednotes_api.ai.quiz import build_quiz_messages, parse_quiz
from mednotes_api.config import Settings
from mednotes_api.dependencies import get_fetcher, get_optional_session, get_session, get_settings, get_signer, get_store
from mednotes_api.domain.entities import FeedQuery, PatientSummary, SessionContext
from mednotes_api.domain.exceptions import (
    AuthorizationError,
    ExternalAIError,
    FeedError,
    StorageError,
    TransientFetchError,
    ValidationError,
)
from mednotes_api.domain.ports import MediaSigner, NoteStore
from mednotes_api.domain.schemas import (
    AttachmentOut,
    FeedOut,
    NoteCreateIn,
    NoteOut,
    NoteSummaryOut,
    NoteUpdateIn,
    PatientSummaryIn,
    PatientSummaryOut,
    QuizIn,
    QuizOut,
    QuizQuestionOut,
    SharedMediaOut,
    SharedNoteOut,
    StoredQuizOut,
)
from mednotes_api.feed.fetcher import FeedFetcher
from mednotes_api.feed.signed_urls import SignedUrlCache

router = APIRouter()
logger = logging.getLogger("mednotes.api")


def _http_error(e: FeedError) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, AuthorizationError):
        return HTTPException(status_code=404, detail=str(e) or "note_not_found")
    if isinstance(e, StorageError):
        return HTTPException(status_code=502, detail=str(e) or "storage_failed")
    if isinstance(e, TransientFetchError):
        return HTTPException(status_code=503, detail=str(e) or "store_unavailable")
    return HTTPException(status_code=500, detail=str(e))


def _clean_content(raw: Optional[str]) -> str:
    content = (raw or "").strip()
    if not content:
        raise ValidationError("content_required")
    return content


def _clean_tags(raw: list[str]) -> list[str]:
    out: list[str] = []
    for t in raw:
        t = t.strip()
        if t and t not in out:
            out.append(t)
    return out


def _ensure_external_ready(settings: Settings) -> str:
    if not settings.ai_external_enabled:
        raise HTTPException(status_code=403, detail="external_ai_disabled")
    if not settings.openai_api_key:
        raise HTTPException(status_code=400, detail="provider_not_configured")
    return settings.openai_api_key


def _ensure_size_ok(settings: Settings, chunks: list[str]) -> None:
    total = sum(len(c) for c in chunks if c)
    if total > settings.ai_external_max_chars:
        raise HTTPException(status_code=400, detail="external_payload_too_large")


@router.get("/health")
def health():
    return {"ok": True}


@router.get("/notes", response_model=FeedOut)
async def list_notes(
    scope: Literal["mine", "all"] = "mine",
    q: Optional[str] = None,
    tag: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1, le=500),
    session: Optional[SessionContext] = Depends(get_optional_session),
    fetcher: FeedFetcher = Depends(get_fetcher),
):
    if scope == "mine" and session is None:
        raise HTTPException(status_code=401, detail="unauthorized")
    if limit is not None:
        fetcher = FeedFetcher(fetcher.store, limit=limit)
    try:
        items = await fetcher.fetch(session, FeedQuery(scope=scope, search_term=q or "", tag=tag))
    except FeedError as e:
        raise _http_error(e) from e
    return FeedOut(items=[NoteSummaryOut.from_summary(n) for n in items])


@router.post("/notes", response_model=NoteOut, status_code=201)
async def create_note(
    payload: NoteCreateIn,
    request: Request,
    session: SessionContext = Depends(get_session),
    store: NoteStore = Depends(get_store),
):
    try:
        note = await store.create_note(session, _clean_content(payload.content), _clean_tags(payload.tags))
    except FeedError as e:
        raise _http_error(e) from e
    logger.info("note_create", extra={"rid": getattr(request.state, "request_id", ""), "id": note.id})
    return NoteOut.from_record(note)


@router.patch("/notes/{note_id}")
async def update_note(
    note_id: str,
    payload: NoteUpdateIn,
    request: Request,
    session: SessionContext = Depends(get_session),
    store: NoteStore = Depends(get_store),
):
    fields: dict = {}
    try:
        if payload.content is not None:
            fields["content"] = _clean_content(payload.content)
        if payload.tags is not None:
            fields["tags"] = _clean_tags(payload.tags)
        if payload.is_starred is not None:
            fields["is_starred"] = payload.is_starred
        if not fields:
            raise ValidationError("no_fields")
        await store.update_note(session, note_id, fields)
    except FeedError as e:
        raise _http_error(e) from e
    logger.info("note_update", extra={"rid": getattr(request.state, "request_id", ""), "id": note_id, "fields": sorted(fields)})
    return {"updated": note_id}


@router.delete("/notes/{note_id}")
async def delete_note(
    note_id: str,
    request: Request,
    session: SessionContext = Depends(get_session),
    store: NoteStore = Depends(get_store),
):
    try:
        await store.delete_note(session, note_id)
    except FeedError as e:
        raise _http_error(e) from e
    logger.info("note_delete", extra={"rid": getattr(request.state, "request_id", ""), "id": note_id})
    return {"deleted": note_id}


@router.post("/notes/{note_id}/media", response_model=AttachmentOut, status_code=201)
async def attach_media(
    note_id: str,
    request: Request,
    file: UploadFile = File(...),
    session: SessionContext = Depends(get_session),
    store: NoteStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    file_name = (file.filename or "").replace("/", "_").strip()
    if not file_name:
        raise HTTPException(status_code=400, detail="filename_required")
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="empty_file")
    if len(data) > settings.media_max_bytes:
        raise HTTPException(status_code=413, detail="media_too_large")
    media_type = file.content_type or "application/octet-stream"
    try:
        attachment = await store.attach_media(session, note_id, file_name, data, media_type)
    except FeedError as e:
        raise _http_error(e) from e
    logger.info("media_attach", extra={"rid": getattr(request.state, "request_id", ""), "id": note_id, "type": media_type})
    return AttachmentOut.from_record(attachment)


@router.get("/share/{secret_url}", response_model=SharedNoteOut)
async def shared_note(
    secret_url: str,
    store: NoteStore = Depends(get_store),
    signer: MediaSigner = Depends(get_signer),
    settings: Settings = Depends(get_settings),
):
    try:
        shared = await store.get_shared_note(secret_url)
    except FeedError as e:
        raise _http_error(e) from e
    # Anonymous viewers get short-lived links; a path that fails to sign is shown without one.
    urls = SignedUrlCache(signer, None, ttl_seconds=settings.signed_url_ttl_seconds)
    resolved = await urls.resolve_many(a.path for a in shared.attachments)
    note = shared.note
    return SharedNoteOut(
        id=note.id,
        created_at=note.created_at,
        content=note.content,
        tags=list(note.tags),
        media=[
            SharedMediaOut(name=a.name or a.path.rsplit("/", 1)[-1], media_type=a.media_type, url=resolved.get(a.path))
            for a in shared.attachments
        ],
    )


@router.post("/ai/quiz", response_model=QuizOut)
async def ai_quiz(
    payload: QuizIn,
    session: SessionContext = Depends(get_session),
    store: NoteStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    api_key = _ensure_external_ready(settings)
    note_ids = list(dict.fromkeys(i for i in payload.note_ids if i))
    if not note_ids:
        raise HTTPException(status_code=400, detail="no_notes")
    try:
        found = {n.id: n for n in await store.get_notes(session, note_ids)}
    except FeedError as e:
        raise _http_error(e) from e
    if any(i not in found for i in note_ids):
        raise HTTPException(status_code=404, detail="note_not_found")
    notes = [found[i] for i in note_ids]
    _ensure_size_ok(settings, [n.content for n in notes])

    try:
        resp = await openai_chat_completion(
            base_url=settings.openai_base_url,
            api_key=api_key,
            model=settings.openai_quiz_model,
            messages=build_quiz_messages(notes, payload.num_questions),
            temperature=0.7,
            max_tokens=1200,
        )
        questions = parse_quiz(resp.content, note_ids)
    except ExternalAIError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e

    try:
        quiz = await store.save_quiz(session, questions)
    except FeedError as e:
        raise _http_error(e) from e
    logger.info("quiz_create", extra={"id": quiz.id, "questions": len(quiz.questions)})
    return QuizOut(
        id=quiz.id,
        provider=resp.provider,
        questions=[QuizQuestionOut.from_question(q) for q in quiz.questions],
    )


@router.get("/ai/quiz/{quiz_id}", response_model=StoredQuizOut)
async def get_quiz(
    quiz_id: str,
    session: SessionContext = Depends(get_session),
    store: NoteStore = Depends(get_store),
):
    try:
        quiz = await store.get_quiz(session, quiz_id)
    except FeedError as e:
        raise _http_error(e) from e
    return StoredQuizOut.from_quiz(quiz)


@router.post("/ai/patient-summary", response_model=PatientSummaryOut)
async def ai_patient_summary(
    payload: PatientSummaryIn,
    request: Request,
    session: SessionContext = Depends(get_session),
    store: NoteStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    feedback = (payload.feedback or "").strip() or None
    try:
        existing = await store.find_patient_summary(session, payload.note_id, feedback)
        if existing is not None:
            return PatientSummaryOut(id=existing.id, summary=existing.summary_text, source="stored")
        note = await store.get_note(session, payload.note_id)
    except FeedError as e:
        raise _http_error(e) from e

    if not eligible_for_patient_summary(note.tags):
        return Response(status_code=204)

    api_key = _ensure_external_ready(settings)
    _ensure_size_ok(settings, [note.content, feedback or ""])
    try:
        resp = await openai_chat_completion(
            base_url=settings.openai_base_url,
            api_key=api_key,
            model=settings.openai_summary_model,
            messages=build_patient_summary_messages(note.content, feedback),
            temperature=0.5,
            max_tokens=2000,
        )
    except ExternalAIError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    text = resp.content.strip()
    if not text:
        raise HTTPException(status_code=502, detail="external_empty_summary")

    try:
        saved = await store.save_patient_summary(
            session,
            PatientSummary(id="", note_id=note.id, summary_text=text, feedback=feedback, user_id=note.user_id or None),
        )
    except FeedError as e:
        raise _http_error(e) from e
    logger.info("patient_summary_create", extra={"rid": getattr(request.state, "request_id", ""), "id": saved.id})
    return PatientSummaryOut(id=saved.id, summary=saved.summary_text, source="generated")
