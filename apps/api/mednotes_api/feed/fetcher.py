from __future__ import annotations

import logging
from dataclasses import dataclass, field

from mednotes_api.domain.entities import AttachmentRecord, FeedQuery, NoteRecord, NoteSummary, SessionContext
from mednotes_api.domain.ports import NoteStore

logger = logging.getLogger("mednotes.feed")


@dataclass
class _MediaInfo:
    image_paths: list[str] = field(default_factory=list)
    has_pdf: bool = False


def fold_attachments(records: list[NoteRecord], attachments: list[AttachmentRecord]) -> list[NoteSummary]:
    media: dict[str, _MediaInfo] = {}
    for a in attachments:
        if not a.note_id or not a.path:
            continue
        info = media.setdefault(a.note_id, _MediaInfo())
        media_type = (a.media_type or "").lower()
        if "pdf" in media_type:
            info.has_pdf = True
        if media_type.startswith("image/") and a.path not in info.image_paths:
            info.image_paths.append(a.path)

    out: list[NoteSummary] = []
    for r in records:
        info = media.get(r.id) or _MediaInfo()
        out.append(
            NoteSummary(
                id=r.id,
                created_at=r.created_at,
                content=r.content,
                tags=tuple(r.tags),
                is_starred=r.is_starred,
                user_id=r.user_id,
                image_paths=tuple(info.image_paths),
                has_pdf=info.has_pdf,
            )
        )
    return out


def feed_order(records: list[NoteRecord]) -> list[NoteRecord]:
    # Newest first; equal timestamps fall back to ascending id.
    by_id = sorted(records, key=lambda r: r.id)
    return sorted(by_id, key=lambda r: r.created_at, reverse=True)


class FeedFetcher:
    def __init__(self, store: NoteStore, *, limit: int = 100) -> None:
        self.store = store
        self.limit = limit

    async def fetch(self, session: SessionContext | None, query: FeedQuery) -> list[NoteSummary]:
        """
        Retrieve the feed for `query`, attachments folded in.

        Store errors propagate untouched: a failed attachment lookup fails the
        whole fetch rather than returning summaries without their media.
        """
        if query.scope == "mine" and session is None:
            return []
        owner_id = session.user_id if (session is not None and query.scope == "mine") else None
        records = await self.store.list_notes(
            session,
            owner_id=owner_id,
            search_term=query.normalized_term or None,
            tag=query.normalized_tag,
            limit=self.limit,
        )
        records = feed_order(records)
        if not records:
            return []

        attachments = await self.store.list_attachments(session, [r.id for r in records])
        logger.debug(
            "feed_fetch",
            extra={"scope": query.scope, "q": query.normalized_term, "tag": query.normalized_tag, "count": len(records)},
        )
        return fold_attachments(records, attachments)
