from .debounce import Debouncer
from .fetcher import FeedFetcher
from .merge import FeedSnapshot, MutationLedger, PendingChange, prepend_new, replace
from .scroll import FeedContainer, ScrollRestorer
from .session_cache import MemorySessionStorage, SessionFeedCache
from .signed_urls import SignedUrlCache
from .view import FeedState, FeedView
from .factory import build_feed_view

__all__ = [
    "Debouncer",
    "FeedContainer",
    "FeedFetcher",
    "FeedSnapshot",
    "FeedState",
    "FeedView",
    "MemorySessionStorage",
    "MutationLedger",
    "PendingChange",
    "ScrollRestorer",
    "SessionFeedCache",
    "SignedUrlCache",
    "build_feed_view",
    "prepend_new",
    "replace",
]
