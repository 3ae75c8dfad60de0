from __future__ import annotations

from datetime import datetime, timezone


def rfc3339_now() -> str:
    return rfc3339(datetime.now(tz=timezone.utc))


def rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_rfc3339(raw: str) -> datetime:
    # Postgres emits "+00:00" offsets, older clients a trailing "Z".
    value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def normalize_tags(raw: object) -> tuple[str, ...]:
    if not isinstance(raw, (list, tuple)):
        return ()
    out: list[str] = []
    for t in raw:
        if isinstance(t, str) and t.strip() and t.strip() not in out:
            out.append(t.strip())
    return tuple(out)
