from __future__ import annotations

import asyncio
import json
import logging
from typing import Protocol

from mednotes_api.domain.ports import SessionStorage

logger = logging.getLogger("mednotes.feed")


class FeedContainer(Protocol):
    def child_count(self) -> int:
        ...

    def scroll_to(self, offset: int) -> None:
        ...


class ScrollRestorer:
    KEY = "feed:scroll"

    def __init__(self, storage: SessionStorage, *, max_attempts: int = 120, frame_interval: float = 1 / 60) -> None:
        self.storage = storage
        self.max_attempts = max_attempts
        self.frame_interval = frame_interval

    def save(self, offset: int, expected_children: int = 1) -> None:
        self.storage.set_item(self.KEY, json.dumps({"offset": offset, "expected": max(1, expected_children)}))

    def saved(self) -> tuple[int, int] | None:
        raw = self.storage.get_item(self.KEY)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            return int(data["offset"]), int(data.get("expected", 1))
        except (ValueError, TypeError, KeyError):
            self.discard()
            return None

    def discard(self) -> None:
        self.storage.remove_item(self.KEY)

    async def restore(self, container: FeedContainer) -> bool:
        """
        Scroll back once the container holds the expected rows.

        Checks once per frame. The saved offset is cleared exactly once: after
        a successful scroll, or when `max_attempts` frames pass without the
        content appearing.
        """
        saved = self.saved()
        if saved is None:
            return False
        offset, expected = saved
        for _ in range(self.max_attempts):
            if container.child_count() >= expected:
                container.scroll_to(offset)
                self.discard()
                return True
            await asyncio.sleep(self.frame_interval)
        logger.info("scroll_restore_abandoned", extra={"offset": offset, "expected": expected})
        self.discard()
        return False
