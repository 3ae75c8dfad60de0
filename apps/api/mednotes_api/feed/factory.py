from __future__ import annotations

from mednotes_api.config import Settings
from mednotes_api.domain.entities import FeedQuery, NoteSummary, SessionContext
from mednotes_api.domain.ports import MediaSigner, NoteStore, SessionStorage

from .fetcher import FeedFetcher
from .scroll import ScrollRestorer
from .session_cache import SessionFeedCache
from .signed_urls import SignedUrlCache
from .view import FeedView


def build_feed_view(
    settings: Settings,
    *,
    store: NoteStore,
    signer: MediaSigner,
    storage: SessionStorage,
    session: SessionContext | None,
    query: FeedQuery = FeedQuery(),
    initial_snapshot: list[NoteSummary] | None = None,
) -> FeedView:
    return FeedView(
        fetcher=FeedFetcher(store, limit=settings.feed_page_limit),
        store=store,
        session=session,
        session_cache=SessionFeedCache(storage),
        signed_urls=SignedUrlCache(signer, session, ttl_seconds=settings.signed_url_ttl_seconds),
        scroll=ScrollRestorer(storage, max_attempts=settings.scroll_restore_max_attempts),
        query=query,
        initial_snapshot=initial_snapshot,
        debounce_s=settings.feed_debounce_ms / 1000.0,
        refresh_interval_s=settings.feed_refresh_interval_s,
    )
