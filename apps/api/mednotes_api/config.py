from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    supabase_url: str | None
    supabase_anon_key: str | None
    media_bucket: str
    media_max_bytes: int
    signed_url_ttl_seconds: int
    feed_page_limit: int
    feed_debounce_ms: int
    feed_refresh_interval_s: float
    scroll_restore_max_attempts: int
    ai_external_enabled: bool
    openai_base_url: str
    openai_api_key: str | None
    openai_quiz_model: str
    openai_summary_model: str
    ai_external_max_chars: int
    api_debug_log: bool


def load_settings() -> Settings:
    supabase_url = os.environ.get("SUPABASE_URL")
    supabase_anon_key = os.environ.get("SUPABASE_ANON_KEY")
    media_bucket = os.environ.get("MEDIA_BUCKET", "post-media")
    media_max_bytes = int(os.environ.get("MEDIA_MAX_BYTES", str(25 * 1024 * 1024)))
    signed_url_ttl_seconds = int(os.environ.get("SIGNED_URL_TTL_SECONDS", "300"))
    feed_page_limit = int(os.environ.get("FEED_PAGE_LIMIT", "100"))
    feed_debounce_ms = int(os.environ.get("FEED_DEBOUNCE_MS", "500"))
    feed_refresh_interval_s = float(os.environ.get("FEED_REFRESH_INTERVAL_S", "30"))
    scroll_restore_max_attempts = int(os.environ.get("SCROLL_RESTORE_MAX_ATTEMPTS", "120"))
    ai_external_enabled = os.environ.get("AI_EXTERNAL_ENABLED", "false").lower() == "true"
    openai_base_url = os.environ.get("OPENAI_BASE_URL", "https://api.openai.com")
    openai_api_key = os.environ.get("OPENAI_API_KEY")
    openai_quiz_model = os.environ.get("OPENAI_QUIZ_MODEL", "gpt-4o")
    openai_summary_model = os.environ.get("OPENAI_SUMMARY_MODEL", "gpt-4o-mini")
    ai_external_max_chars = int(os.environ.get("AI_EXTERNAL_MAX_CHARS", "60000"))
    api_debug_log = os.environ.get("API_DEBUG_LOG", "false").lower() == "true"
    return Settings(
        supabase_url=supabase_url,
        supabase_anon_key=supabase_anon_key,
        media_bucket=media_bucket,
        media_max_bytes=media_max_bytes,
        signed_url_ttl_seconds=signed_url_ttl_seconds,
        feed_page_limit=feed_page_limit,
        feed_debounce_ms=feed_debounce_ms,
        feed_refresh_interval_s=feed_refresh_interval_s,
        scroll_restore_max_attempts=scroll_restore_max_attempts,
        ai_external_enabled=ai_external_enabled,
        openai_base_url=openai_base_url,
        openai_api_key=openai_api_key,
        openai_quiz_model=openai_quiz_model,
        openai_summary_model=openai_summary_model,
        ai_external_max_chars=ai_external_max_chars,
        api_debug_log=api_debug_log,
    )
