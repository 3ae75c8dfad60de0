from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from mednotes_api.domain.entities import SessionContext
from mednotes_api.domain.exceptions import StorageError
from mednotes_api.domain.ports import MediaSigner

logger = logging.getLogger("mednotes.feed")


@dataclass(frozen=True)
class SignedUrlEntry:
    url: str
    issued_at: float


class SignedUrlCache:
    """
    Path -> short-lived signed URL, scoped to one feed view.

    At most one upstream request per path is in flight; concurrent callers
    await the same task. Failures are remembered until `begin_cycle()` so a
    broken thumbnail is not re-requested on every render pass. Nothing here is
    ever persisted: an expired signed URL is a dead credential.
    """

    def __init__(
        self,
        signer: MediaSigner,
        session: SessionContext | None = None,
        *,
        ttl_seconds: int = 300,
        refresh_margin_seconds: int = 30,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.signer = signer
        self.session = session
        self.ttl_seconds = ttl_seconds
        self.refresh_margin_seconds = min(refresh_margin_seconds, ttl_seconds // 2)
        self._clock = clock
        self._entries: dict[str, SignedUrlEntry] = {}
        self._failed: set[str] = set()
        self._inflight: dict[str, asyncio.Task[str | None]] = {}

    def peek(self, path: str) -> str | None:
        entry = self._entries.get(path)
        if entry is None or self._expired(entry):
            return None
        return entry.url

    def failed(self, path: str) -> bool:
        return path in self._failed

    async def resolve(self, path: str) -> str | None:
        entry = self._entries.get(path)
        if entry is not None and not self._expired(entry):
            return entry.url
        if path in self._failed:
            return None

        task = self._inflight.get(path)
        if task is None:
            task = asyncio.ensure_future(self._issue(path))
            self._inflight[path] = task
            task.add_done_callback(lambda _t, p=path: self._inflight.pop(p, None))
        return await asyncio.shield(task)

    async def resolve_many(self, paths: Iterable[str]) -> dict[str, str | None]:
        unique = list(dict.fromkeys(p for p in paths if p))
        results = await asyncio.gather(*(self.resolve(p) for p in unique))
        return dict(zip(unique, results))

    def begin_cycle(self) -> None:
        self._failed.clear()

    def clear(self) -> None:
        for task in self._inflight.values():
            task.cancel()
        self._inflight.clear()
        self._entries.clear()
        self._failed.clear()

    def _expired(self, entry: SignedUrlEntry) -> bool:
        return self._clock() - entry.issued_at >= self.ttl_seconds - self.refresh_margin_seconds

    async def _issue(self, path: str) -> str | None:
        try:
            url = await self.signer.sign_url(self.session, path, self.ttl_seconds)
        except StorageError as e:
            logger.warning("signed_url_failed", extra={"path": path, "error": str(e)})
            self._entries.pop(path, None)
            self._failed.add(path)
            return None
        self._entries[path] = SignedUrlEntry(url=url, issued_at=self._clock())
        return url
