"""
Query engine over the rotating file store.

Every query is a full scan of the stored files followed by in-memory
filtering; at the expected volume (thousands of events per day) no index
is needed.
"""

import json
import re
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Union

from .errors import ValidationError
from .file_store import RotatingFileStore, safe_source_name
from .models import LogEvent, LogLevel, utcnow

_TIME_RANGE = re.compile(r"^\s*(\d+)\s*([mhdw])\s*$", re.IGNORECASE)
_UNITS = {"m": "minutes", "h": "hours", "d": "days", "w": "weeks"}


def parse_time_range(value: str) -> timedelta:
    """
    Parse a duration specifier such as ``"30m"``, ``"24h"``, ``"7d"`` or ``"2w"``.

    Raises:
        ValidationError: If the specifier is not understood
    """
    match = _TIME_RANGE.match(value or "")
    if not match:
        raise ValidationError(f"invalid timeRange {value!r}; expected e.g. 30m, 24h, 7d, 2w")
    amount, unit = match.groups()
    return timedelta(**{_UNITS[unit.lower()]: int(amount)})


def matches_search(event: LogEvent, search: str) -> bool:
    """Case-insensitive substring match over message, level, source and metadata."""
    needle = search.lower()
    haystacks = (
        event.message,
        event.level.value,
        event.source,
        json.dumps(event.metadata, ensure_ascii=False, default=str),
    )
    return any(needle in h.lower() for h in haystacks)


class QueryEngine:
    """Answers filtered historical queries over everything in the file store."""

    def __init__(self, store: RotatingFileStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self._clock = clock or utcnow

    def query(self, source: Optional[str] = None,
              level: Optional[Union[str, LogLevel]] = None,
              search: Optional[str] = None,
              time_range: Optional[str] = None,
              limit: Optional[int] = None,
              now: Optional[datetime] = None) -> List[LogEvent]:
        """
        Return stored events matching every given filter, newest first.

        Args:
            source: Source to match, compared by its on-disk directory name so
                listed sources such as "client_app" find "client app"; None for all
            level: Exact level to match; None for all levels
            search: Case-insensitive text matched against message, level, source and metadata
            time_range: Duration such as "24h"; events older than now minus it are dropped
            limit: Maximum number of events to return after sorting
            now: Reference time for ``time_range`` (defaults to the engine clock)

        Returns:
            List[LogEvent]: Matching events sorted by timestamp descending

        Raises:
            ValidationError: If ``level`` or ``time_range`` is not understood
        """
        wanted_level = None
        if level:
            try:
                wanted_level = LogLevel.parse(level)
            except ValueError:
                raise ValidationError(f"invalid level {level!r}")

        cutoff = None
        if time_range:
            cutoff = (now or self._clock()) - parse_time_range(time_range)

        wanted_source = safe_source_name(source) if source else None
        results = []
        for event in self.store.read_all(source):
            if wanted_source and safe_source_name(event.source) != wanted_source:
                continue
            if wanted_level and event.level != wanted_level:
                continue
            if cutoff and event.timestamp < cutoff:
                continue
            if search and not matches_search(event, search):
                continue
            results.append(event)

        # Stable sort keeps arrival order for equal timestamps
        results = self._sort_newest_first(results)
        if limit is not None and limit >= 0:
            results = results[:limit]
        return results

    @staticmethod
    def _sort_newest_first(events: Iterable[LogEvent]) -> List[LogEvent]:
        indexed = list(enumerate(events))
        indexed.sort(key=lambda pair: (pair[1].timestamp, -pair[0]), reverse=True)
        return [event for _, event in indexed]

    def export(self, **filters) -> bytes:
        """Run ``query`` and serialise the result as a JSON array document."""
        events = self.query(**filters)
        return json.dumps([e.to_record() for e in events], ensure_ascii=False, indent=2).encode("utf-8")

    def export_filename(self, now: Optional[datetime] = None) -> str:
        stamp = (now or self._clock()).strftime("%Y-%m-%dT%H-%M-%SZ")
        return f"logs-{stamp}.json"

    def count_by_source(self) -> Dict[str, int]:
        return dict(Counter(e.source for e in self.store.read_all()))

    def count_by_level(self) -> Dict[str, int]:
        return dict(Counter(e.level.value for e in self.store.read_all()))

    def total_count(self) -> int:
        return len(self.store.read_all())

    def stats(self) -> Dict[str, object]:
        """All aggregate views computed from a single scan."""
        events = self.store.read_all()
        return {
            'total': len(events),
            'bySource': dict(Counter(e.source for e in events)),
            'byLevel': dict(Counter(e.level.value for e in events)),
        }
