from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from mednotes_api.domain.entities import NoteSummary

MUTABLE_FIELDS = frozenset({"content", "tags", "is_starred"})


class FeedSnapshot:
    """Ordered, id-unique list of the summaries currently on screen."""

    def __init__(self, entries: Iterable[NoteSummary] = ()) -> None:
        self._entries: list[NoteSummary] = []
        seen: set[str] = set()
        for e in entries:
            if e.id in seen:
                continue
            seen.add(e.id)
            self._entries.append(e)

    def __iter__(self) -> Iterator[NoteSummary]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, note_id: object) -> bool:
        return any(e.id == note_id for e in self._entries)

    @property
    def entries(self) -> list[NoteSummary]:
        return list(self._entries)

    @property
    def head_id(self) -> str | None:
        return self._entries[0].id if self._entries else None

    def ids(self) -> list[str]:
        return [e.id for e in self._entries]

    def index_of(self, note_id: str) -> int:
        for i, e in enumerate(self._entries):
            if e.id == note_id:
                return i
        return -1

    def get(self, note_id: str) -> NoteSummary | None:
        i = self.index_of(note_id)
        return self._entries[i] if i >= 0 else None

    def prepend(self, entries: list[NoteSummary]) -> None:
        self._entries[:0] = entries

    def set_entry(self, index: int, entry: NoteSummary) -> None:
        self._entries[index] = entry

    def pop(self, index: int) -> NoteSummary:
        return self._entries.pop(index)

    def insert(self, index: int, entry: NoteSummary) -> None:
        if entry.id in self:
            return
        self._entries.insert(max(0, min(index, len(self._entries))), entry)


def replace(fetched: Iterable[NoteSummary]) -> FeedSnapshot:
    return FeedSnapshot(fetched)


def prepend_new(
    snapshot: FeedSnapshot,
    fetched: list[NoteSummary],
    *,
    exclude: Iterable[str] = (),
) -> list[NoteSummary]:
    """
    Merge a background refresh into `snapshot` in place.

    Only entries absent from the snapshot are added, in front; entries
    already on screen keep their identity and field values even when the
    refresh carries different ones. Returns the prepended entries.
    """
    if not fetched:
        return []
    skip = set(exclude)
    if len(snapshot) == 0:
        added = [e for e in FeedSnapshot(fetched) if e.id not in skip]
        snapshot.prepend(added)
        return added
    if fetched[0].id == snapshot.head_id:
        return []

    present = set(snapshot.ids()) | skip
    added: list[NoteSummary] = []
    for e in fetched:
        if e.id in present:
            continue
        present.add(e.id)
        added.append(e)
    snapshot.prepend(added)
    return added


@dataclass(eq=False)
class PendingChange:
    note_id: str
    kind: str
    prior: dict[str, Any] = field(default_factory=dict)
    applied: dict[str, Any] = field(default_factory=dict)
    removed: NoteSummary | None = None
    index: int = -1
    token: int = 0


class MutationLedger:
    """
    Optimistic mutations awaiting their store round trip.

    Each change records the exact prior value of every field it touched. When
    several changes to one field overlap, rolling back an older one does not
    touch the screen; its prior value is handed to the next pending change
    so that a later rollback lands on the last value the store confirmed.
    """

    def __init__(self) -> None:
        self._pending: list[PendingChange] = []

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def deleting(self) -> set[str]:
        return {c.note_id for c in self._pending if c.kind == "delete"}

    def apply(self, snapshot: FeedSnapshot, note_id: str, **fields: Any) -> PendingChange | None:
        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"immutable_fields:{','.join(sorted(unknown))}")
        index = snapshot.index_of(note_id)
        if index < 0:
            return None
        current = snapshot.entries[index]
        prior = {k: getattr(current, k) for k in fields}
        snapshot.set_entry(index, dataclasses.replace(current, **fields))
        change = PendingChange(note_id=note_id, kind="update", prior=prior, applied=dict(fields), index=index)
        self._pending.append(change)
        return change

    def remove(self, snapshot: FeedSnapshot, note_id: str) -> PendingChange | None:
        index = snapshot.index_of(note_id)
        if index < 0:
            return None
        removed = snapshot.pop(index)
        change = PendingChange(note_id=note_id, kind="delete", removed=removed, index=index)
        self._pending.append(change)
        return change

    def reapply(self, snapshot: FeedSnapshot) -> None:
        """Lay pending updates over a freshly fetched snapshot."""
        for change in self._pending:
            if change.kind != "update":
                continue
            index = snapshot.index_of(change.note_id)
            if index < 0:
                continue
            snapshot.set_entry(index, dataclasses.replace(snapshot.entries[index], **change.applied))

    def confirm(self, change: PendingChange) -> None:
        self._discard(change)

    def drop(self, change: PendingChange) -> None:
        """Forget a failed change without touching the snapshot."""
        self._discard(change)

    def rollback(self, snapshot: FeedSnapshot, change: PendingChange) -> None:
        if change not in self._pending:
            return
        if change.kind == "delete":
            self._discard(change)
            if change.removed is not None:
                snapshot.insert(change.index, change.removed)
            return

        position = self._pending.index(change)
        later = self._pending[position + 1 :]
        self._discard(change)
        restore: dict[str, Any] = {}
        for name, value in change.prior.items():
            successor = next(
                (c for c in later if c.kind == "update" and c.note_id == change.note_id and name in c.prior),
                None,
            )
            if successor is not None:
                successor.prior[name] = value
            else:
                restore[name] = value
        if not restore:
            return
        index = snapshot.index_of(change.note_id)
        if index < 0:
            return
        snapshot.set_entry(index, dataclasses.replace(snapshot.entries[index], **restore))

    def _discard(self, change: PendingChange) -> None:
        self._pending = [c for c in self._pending if c is not change]
