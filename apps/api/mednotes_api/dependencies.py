from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException

from mednotes_api.config import Settings, load_settings
from mednotes_api.domain.entities import SessionContext
from mednotes_api.domain.exceptions import FeedError
from mednotes_api.domain.ports import MediaSigner, NoteStore
from mednotes_api.feed.fetcher import FeedFetcher
from mednotes_api.infrastructure.supabase_rest import SupabaseRestStore

@lru_cache()
def get_settings() -> Settings:
    return load_settings()

@lru_cache()
def get_store() -> NoteStore:
    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_anon_key:
        raise HTTPException(status_code=503, detail="store_not_configured")
    return SupabaseRestStore(settings.supabase_url, settings.supabase_anon_key, bucket=settings.media_bucket)

def get_signer(store: NoteStore = Depends(get_store)) -> MediaSigner:
    return store  # the REST store signs its own bucket

def get_fetcher(store: NoteStore = Depends(get_store), settings: Settings = Depends(get_settings)) -> FeedFetcher:
    return FeedFetcher(store, limit=settings.feed_page_limit)

def _bearer(authorization: str) -> Optional[str]:
    if authorization.startswith("Bearer ") and authorization[7:].strip():
        return authorization[7:].strip()
    return None

async def get_optional_session(
    authorization: str = Header(default=""),
    store: NoteStore = Depends(get_store),
) -> Optional[SessionContext]:
    token = _bearer(authorization)
    if token is None:
        return None
    try:
        return await store.authenticate(token)
    except FeedError as e:
        raise HTTPException(status_code=401, detail="unauthorized") from e

async def get_session(session: Optional[SessionContext] = Depends(get_optional_session)) -> SessionContext:
    if session is None:
        raise HTTPException(status_code=401, detail="unauthorized")
    return session
