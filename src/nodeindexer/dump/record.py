"""Peer record model and its search-index document form."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def format_timestamp(value: datetime) -> str:
    """Render *value* as an RFC 3339 UTC string with second resolution."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def parse_timestamp(value: object) -> datetime | None:
    """Parse an indexed timestamp back into an aware UTC datetime.

    Accepts the ``Z`` suffix and explicit offsets; fractional seconds are
    dropped.  Returns ``None`` for anything that is not a usable string.
    """
    if not isinstance(value, str) or not value:
        return None
    text = value.replace("Z", "+00:00") if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).replace(microsecond=0)


def truncate_to_seconds(value: datetime) -> datetime:
    """Return *value* in UTC without sub-second precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0)


@dataclass(frozen=True)
class NodeRecord:
    """A single peer observation from the dump."""

    address: str
    good: bool
    last_success: datetime
    percent_2h: float
    percent_8h: float
    percent_1d: float
    percent_7d: float
    percent_30d: float
    blocks: int
    services: str
    version: str
    user_agent: str
    user_agent_version: str
    last_seen: datetime | None = None
    stale: bool = False

    def observed(self, seen_at: datetime) -> NodeRecord:
        """Return a copy stamped as seen at *seen_at* and not stale."""
        return replace(self, last_seen=truncate_to_seconds(seen_at), stale=False)

    def to_document(self) -> dict[str, Any]:
        """Serialize to the index document shape (camelCase field names)."""
        return {
            "address": self.address,
            "good": self.good,
            "lastSuccess": format_timestamp(self.last_success),
            "lastSeen": format_timestamp(self.last_seen) if self.last_seen else None,
            "percent2h": self.percent_2h,
            "percent8h": self.percent_8h,
            "percent1d": self.percent_1d,
            "percent7d": self.percent_7d,
            "percent30d": self.percent_30d,
            "blocks": self.blocks,
            "services": self.services,
            "version": self.version,
            "userAgent": self.user_agent,
            "userAgentVersion": self.user_agent_version,
            "stale": self.stale,
        }
