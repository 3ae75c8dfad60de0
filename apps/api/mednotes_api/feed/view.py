from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from mednotes_api.domain.entities import FeedQuery, NoteSummary, Scope, SessionContext
from mednotes_api.domain.exceptions import FeedError, ValidationError
from mednotes_api.domain.ports import NoteStore

from .debounce import Debouncer
from .fetcher import FeedFetcher
from .merge import FeedSnapshot, MutationLedger, PendingChange, prepend_new, replace
from .scroll import FeedContainer, ScrollRestorer
from .session_cache import SessionFeedCache
from .signed_urls import SignedUrlCache

logger = logging.getLogger("mednotes.feed")

THUMBNAILS_PER_NOTE = 4


class FeedState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    POPULATED = "populated"
    ERRORED = "errored"
    UNMOUNTED = "unmounted"


# Inbound events


@dataclass(frozen=True)
class SearchInput:
    raw: str


@dataclass(frozen=True)
class SearchSettled:
    term: str


@dataclass(frozen=True)
class ScopeChanged:
    scope: Scope


@dataclass(frozen=True)
class TagChanged:
    tag: Optional[str]


@dataclass(frozen=True)
class FilterChanged:
    query: FeedQuery


@dataclass(frozen=True)
class Retry:
    pass


@dataclass(frozen=True)
class RefreshTick:
    pass


@dataclass(frozen=True)
class NotesArrived:
    notes: tuple[NoteSummary, ...]


@dataclass(frozen=True)
class ToggleStar:
    note_id: str


@dataclass(frozen=True)
class DeleteNote:
    note_id: str


@dataclass(frozen=True)
class EditNote:
    note_id: str
    content: Optional[str] = None
    tags: Optional[tuple[str, ...]] = None


@dataclass(frozen=True)
class SelectNote:
    note_id: str


# Outbound events


@dataclass(frozen=True)
class StateChanged:
    state: FeedState
    error: Optional[str] = None


@dataclass(frozen=True)
class SnapshotChanged:
    reason: str
    ids: tuple[str, ...]


@dataclass(frozen=True)
class NoteSelected:
    note_id: str


@dataclass(frozen=True)
class ThumbnailsResolved:
    urls: dict[str, Optional[str]]


@dataclass(frozen=True)
class Notice:
    message: str


Listener = Callable[[Any], None]


class FeedView:
    """
    Event-driven feed state machine.

    Inbound events are queued and handled one at a time on the running loop;
    network work runs in tasks whose results are applied only if the request
    token they were issued under is still current.
    """

    def __init__(
        self,
        *,
        fetcher: FeedFetcher,
        store: NoteStore,
        session: SessionContext | None,
        session_cache: SessionFeedCache,
        signed_urls: SignedUrlCache | None = None,
        scroll: ScrollRestorer | None = None,
        query: FeedQuery = FeedQuery(),
        initial_snapshot: list[NoteSummary] | None = None,
        debounce_s: float = 0.5,
        refresh_interval_s: float = 30.0,
    ) -> None:
        self.fetcher = fetcher
        self.store = store
        self.session = session
        self.session_cache = session_cache
        self.signed_urls = signed_urls
        self.scroll = scroll
        self.query = query
        self.refresh_interval_s = refresh_interval_s

        self.state = FeedState.UNINITIALIZED
        self.error: str | None = None
        self.snapshot = FeedSnapshot()
        self.provisional = False
        self.thumbnail_urls: dict[str, Optional[str]] = {}
        self.listeners: list[Listener] = []

        self._initial = initial_snapshot
        self._debouncer: Debouncer[str] = Debouncer(debounce_s, self._on_search_settled, initial=query.search_term)
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._ledger = MutationLedger()
        self._deleted: set[str] = set()
        self._token = 0
        self._tasks: set[asyncio.Task] = set()
        self._commits: set[asyncio.Task] = set()
        self._load_task: asyncio.Task | None = None
        self._refresh_task: asyncio.Task | None = None
        self._run_task: asyncio.Task | None = None
        self._timer_task: asyncio.Task | None = None

    # ------------------------------------------------------------------ lifecycle

    async def mount(self, container: FeedContainer | None = None) -> None:
        if self._run_task is not None:
            return
        self._run_task = asyncio.ensure_future(self._run())
        if self.refresh_interval_s > 0:
            self._timer_task = asyncio.ensure_future(self._refresh_timer())

        painted = self._initial
        if painted is None:
            painted = self.session_cache.load(self._cache_key(self.query))
        if painted:
            self.snapshot = replace(painted)
            self.provisional = True
            self._emit(SnapshotChanged("provisional", tuple(self.snapshot.ids())))

        self.dispatch(FilterChanged(self.query))
        if container is not None and self.scroll is not None:
            self._spawn(self.scroll.restore(container))

    async def unmount(self) -> None:
        if self.state is FeedState.UNMOUNTED:
            return
        self._debouncer.cancel()
        for task in (self._timer_task, self._run_task, *self._tasks):
            if task is not None:
                task.cancel()
        await asyncio.gather(*(t for t in (self._timer_task, self._run_task, *self._tasks) if t), return_exceptions=True)
        if self._commits:
            await asyncio.gather(*self._commits, return_exceptions=True)
        if self.signed_urls is not None:
            self.signed_urls.clear()
        self._set_state(FeedState.UNMOUNTED)

    async def sign_out(self) -> None:
        await self.unmount()
        self.session_cache.clear()
        if self.scroll is not None:
            self.scroll.discard()
        self.session = None
        self.snapshot = FeedSnapshot()
        self.thumbnail_urls = {}

    def dispatch(self, event: Any) -> None:
        if self.state is FeedState.UNMOUNTED:
            return
        self._queue.put_nowait(event)

    async def settle(self) -> None:
        """Wait until queued events and the work they started are done."""
        while True:
            await self._queue.join()
            pending = [t for t in self._tasks | self._commits if not t.done()]
            if not pending:
                if self._queue.empty():
                    return
                continue
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------ intents

    def search(self, raw: str) -> None:
        self.dispatch(SearchInput(raw))

    def set_scope(self, scope: Scope) -> None:
        self.dispatch(ScopeChanged(scope))

    def set_tag(self, tag: Optional[str]) -> None:
        self.dispatch(TagChanged(tag))

    def retry(self) -> None:
        self.dispatch(Retry())

    def focus_regained(self) -> None:
        self.dispatch(RefreshTick())

    def toggle_star(self, note_id: str) -> None:
        self.dispatch(ToggleStar(note_id))

    def delete(self, note_id: str) -> None:
        self.dispatch(DeleteNote(note_id))

    def edit(self, note_id: str, *, content: Optional[str] = None, tags: Optional[list[str]] = None) -> None:
        self.dispatch(EditNote(note_id, content=content, tags=tuple(tags) if tags is not None else None))

    def select(self, note_id: str) -> None:
        self.dispatch(SelectNote(note_id))

    def remember_scroll(self, offset: int) -> None:
        if self.scroll is not None:
            self.scroll.save(offset, expected_children=len(self.snapshot))

    # ------------------------------------------------------------------ event loop

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                self._handle(event)
            except Exception:
                logger.exception("feed_event_failed", extra={"event": type(event).__name__})
            finally:
                self._queue.task_done()

    def _handle(self, event: Any) -> None:
        if isinstance(event, SearchInput):
            self._debouncer.push(event.raw)
        elif isinstance(event, SearchSettled):
            self._filter_changed(dataclasses.replace(self.query, search_term=event.term))
        elif isinstance(event, ScopeChanged):
            self._filter_changed(dataclasses.replace(self.query, scope=event.scope))
        elif isinstance(event, TagChanged):
            self._filter_changed(dataclasses.replace(self.query, tag=event.tag))
        elif isinstance(event, FilterChanged):
            self._filter_changed(event.query)
        elif isinstance(event, Retry):
            self._start_load(self.query)
        elif isinstance(event, RefreshTick):
            self._start_refresh()
        elif isinstance(event, NotesArrived):
            self._merge_background(list(event.notes), reason="push")
        elif isinstance(event, ToggleStar):
            self._toggle_star(event.note_id)
        elif isinstance(event, DeleteNote):
            self._delete(event.note_id)
        elif isinstance(event, EditNote):
            self._edit(event)
        elif isinstance(event, SelectNote):
            self._emit(NoteSelected(event.note_id))
        else:
            raise TypeError(f"unknown_feed_event:{type(event).__name__}")

    def _on_search_settled(self, term: str) -> None:
        self.dispatch(SearchSettled(term))

    # ------------------------------------------------------------------ loading

    def _filter_changed(self, query: FeedQuery) -> None:
        same = self._cache_key(query) == self._cache_key(self.query)
        if same and self.state in (FeedState.POPULATED, FeedState.LOADING):
            self.query = query
            return
        self._start_load(query)

    def _start_load(self, query: FeedQuery) -> None:
        self.query = query
        self._token += 1
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        self._set_state(FeedState.LOADING)
        self._load_task = self._spawn(self._load(self._token, query))

    async def _load(self, token: int, query: FeedQuery) -> None:
        try:
            notes = await self.fetcher.fetch(self.session, query)
        except FeedError as e:
            if token == self._token:
                self._fail(str(e) or type(e).__name__)
            return
        except Exception as e:
            logger.exception("feed_load_unexpected", extra={"token": token})
            if token == self._token:
                self._fail(f"unexpected_error:{type(e).__name__}")
            return

        if token != self._token:
            logger.debug("feed_stale_discarded", extra={"token": token, "current": self._token})
            return

        hidden = self._ledger.deleting | self._deleted
        self.snapshot = replace(n for n in notes if n.id not in hidden)
        self._ledger.reapply(self.snapshot)
        self.provisional = False
        self.error = None
        self.session_cache.save(self._cache_key(query), self.snapshot.entries)
        logger.info("feed_load", extra={"token": token, "scope": query.scope, "count": len(self.snapshot)})
        self._set_state(FeedState.POPULATED)
        self._emit(SnapshotChanged("replace", tuple(self.snapshot.ids())))
        if self.signed_urls is not None:
            self.signed_urls.begin_cycle()
            self._spawn(self._resolve_thumbnails())

    def _fail(self, message: str) -> None:
        # The last good snapshot stays on screen.
        logger.warning("feed_load_failed", extra={"error": message})
        self.error = message
        self._set_state(FeedState.ERRORED)

    def _start_refresh(self) -> None:
        if self.state is not FeedState.POPULATED:
            return
        if self._refresh_task is not None and not self._refresh_task.done():
            return
        self._refresh_task = self._spawn(self._refresh(self._token, self.query))

    async def _refresh(self, token: int, query: FeedQuery) -> None:
        try:
            notes = await self.fetcher.fetch(self.session, query)
        except FeedError as e:
            logger.info("feed_refresh_failed", extra={"error": str(e)})
            return
        except Exception:
            logger.exception("feed_refresh_failed", extra={"token": token})
            return
        if token != self._token or self.state is not FeedState.POPULATED:
            return
        self._merge_background(notes, reason="refresh")

    def _merge_background(self, notes: list[NoteSummary], *, reason: str) -> None:
        if self.state is not FeedState.POPULATED:
            return
        added = prepend_new(self.snapshot, notes, exclude=self._ledger.deleting | self._deleted)
        if not added:
            return
        self.session_cache.save(self._cache_key(self.query), self.snapshot.entries)
        logger.info("feed_prepend", extra={"reason": reason, "added": len(added)})
        self._emit(SnapshotChanged("prepend", tuple(self.snapshot.ids())))
        if self.signed_urls is not None:
            self._spawn(self._resolve_thumbnails(added))

    async def _refresh_timer(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_interval_s)
            self.dispatch(RefreshTick())

    async def _resolve_thumbnails(self, notes: list[NoteSummary] | None = None) -> None:
        if self.signed_urls is None:
            return
        source = notes if notes is not None else self.snapshot.entries
        paths = [p for n in source for p in n.image_paths[:THUMBNAILS_PER_NOTE]]
        if not paths:
            return
        urls = await self.signed_urls.resolve_many(paths)
        self.thumbnail_urls.update(urls)
        self._emit(ThumbnailsResolved(urls))

    # ------------------------------------------------------------------ mutations

    def _toggle_star(self, note_id: str) -> None:
        entry = self.snapshot.get(note_id)
        if entry is None or not self._require_session():
            return
        value = not entry.is_starred
        change = self._ledger.apply(self.snapshot, note_id, is_starred=value)
        self._commit(change, lambda s: self.store.update_note(s, note_id, {"is_starred": value}))

    def _delete(self, note_id: str) -> None:
        if self.snapshot.get(note_id) is None or not self._require_session():
            return
        change = self._ledger.remove(self.snapshot, note_id)
        self._commit(change, lambda s: self.store.delete_note(s, note_id))

    def _edit(self, event: EditNote) -> None:
        fields: dict[str, Any] = {}
        if event.content is not None:
            content = event.content.strip()
            if not content:
                self._emit(Notice(str(ValidationError("content_required"))))
                return
            fields["content"] = content
        if event.tags is not None:
            fields["tags"] = tuple(t.strip() for t in event.tags if t.strip())
        if not fields or self.snapshot.get(event.note_id) is None or not self._require_session():
            return
        change = self._ledger.apply(self.snapshot, event.note_id, **fields)
        wire = {k: list(v) if isinstance(v, tuple) else v for k, v in fields.items()}
        self._commit(change, lambda s: self.store.update_note(s, event.note_id, wire))

    def _require_session(self) -> bool:
        if self.session is None:
            self._emit(Notice("sign_in_required"))
            return False
        return True

    def _commit(
        self,
        change: PendingChange | None,
        call: Callable[[SessionContext], Awaitable[None]],
    ) -> None:
        if change is None or self.session is None:
            return
        change.token = self._token
        self._emit(SnapshotChanged("optimistic", tuple(self.snapshot.ids())))
        task = asyncio.ensure_future(self._round_trip(change, call, self.session))
        self._commits.add(task)
        task.add_done_callback(self._commits.discard)

    async def _round_trip(
        self,
        change: PendingChange,
        call: Callable[[SessionContext], Awaitable[None]],
        session: SessionContext,
    ) -> None:
        try:
            await call(session)
        except FeedError as e:
            logger.warning("note_mutation_failed", extra={"id": change.note_id, "kind": change.kind, "error": str(e)})
            if change.kind == "delete" and change.token != self._token:
                # The snapshot the note was removed from has been replaced.
                self._ledger.drop(change)
            else:
                self._ledger.rollback(self.snapshot, change)
                self._emit(SnapshotChanged("rollback", tuple(self.snapshot.ids())))
            self._emit(Notice(f"{change.kind}_failed"))
        else:
            self._ledger.confirm(change)
            if change.kind == "delete":
                self._deleted.add(change.note_id)
        if self.state is FeedState.POPULATED:
            self.session_cache.save(self._cache_key(self.query), self.snapshot.entries)

    # ------------------------------------------------------------------ helpers

    def _cache_key(self, query: FeedQuery) -> str:
        return query.signature(self.session.user_id if self.session else None)

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _set_state(self, state: FeedState) -> None:
        if state is self.state and state is not FeedState.ERRORED:
            return
        self.state = state
        self._emit(StateChanged(state, self.error if state is FeedState.ERRORED else None))

    def _emit(self, event: Any) -> None:
        for listener in list(self.listeners):
            listener(event)
