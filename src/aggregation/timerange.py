"""Time windows for aggregate queries.

A request either names an explicit start/end pair or leaves the window
open, in which case the trailing `DEFAULT_WINDOW_DAYS` days are used.
The cache key keeps the two cases apart: an open window is keyed as
"default", never as the concrete timestamps it resolved to.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

DEFAULT_WINDOW_DAYS = 30
DEFAULT_MARKER = "default"


def parse_timestamp(value: datetime | str | None) -> datetime | None:
    """Parse an ISO-8601 string (or datetime) to a naive UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValueError(f"Invalid timestamp: {value!r}") from exc
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


@dataclass(frozen=True)
class TimeRange:
    start: datetime | None = None
    end: datetime | None = None
    window_days: int = DEFAULT_WINDOW_DAYS

    def __post_init__(self):
        if self.start and self.end and self.start > self.end:
            raise ValueError(f"Time range start {self.start} is after end {self.end}")
        if self.window_days <= 0:
            raise ValueError("window_days must be positive")

    @classmethod
    def from_request(
        cls,
        start: datetime | str | None = None,
        end: datetime | str | None = None,
        window_days: int = DEFAULT_WINDOW_DAYS,
    ) -> "TimeRange":
        return cls(parse_timestamp(start), parse_timestamp(end), window_days)

    @property
    def is_default(self) -> bool:
        return self.start is None and self.end is None

    def resolve(self, now: datetime | None = None) -> tuple[datetime, datetime]:
        """Concrete (start, end) bounds; open sides fall back to the trailing window."""
        if now is None:
            now = datetime.now(timezone.utc).replace(tzinfo=None)
        end = self.end or now
        start = self.start or end - timedelta(days=self.window_days)
        return start, end

    def key_parts(self) -> dict[str, str]:
        return {
            "start": self.start.isoformat() if self.start else DEFAULT_MARKER,
            "end": self.end.isoformat() if self.end else DEFAULT_MARKER,
            "window_days": str(self.window_days) if self.start is None or self.end is None else "",
        }
