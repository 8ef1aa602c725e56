"""
Ingestion service shared by the HTTP endpoint and the WebSocket channel.

An accepted event is validated, persisted to the file store, checked against
the alert thresholds and broadcast live: to every subscriber as ``log`` and to
the room named after its source as ``source-log``.
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from .alerts import AlertMonitor
from .file_store import RotatingFileStore
from .hub import ConnectionHub
from .models import LogEvent, LogSubmission, validate_event
from .query import QueryEngine

logger = logging.getLogger(__name__)


class IngestionService:
    """Validates, persists and fans out incoming log events."""

    def __init__(self, store: RotatingFileStore, query_engine: QueryEngine,
                 hub: ConnectionHub, alerts: AlertMonitor):
        self.store = store
        self.query_engine = query_engine
        self.hub = hub
        self.alerts = alerts

    async def ingest(self, payload: Union[LogEvent, LogSubmission, Mapping[str, Any]]) -> LogEvent:
        """
        Accept one event from a producer.

        Args:
            payload: The submitted event

        Returns:
            LogEvent: The stored event

        Raises:
            ValidationError: If the payload is not a valid event
            StorageError: If the event could not be persisted
        """
        event = validate_event(payload, default_source=self.store.config.default_source)
        await asyncio.to_thread(self.store.append, event)

        record = event.to_record()
        self.hub.broadcast('log', record)
        self.hub.broadcast_to_room(event.source, 'source-log', record)

        alert = self.alerts.record(event.level)
        if alert is not None:
            logger.warning(f"Alert raised: {alert.message}")
            self.hub.broadcast('alert', alert.to_payload())

        return event

    async def query(self, source: Optional[str] = None, level: Optional[str] = None,
                    search: Optional[str] = None, time_range: Optional[str] = None,
                    limit: Optional[int] = None) -> List[LogEvent]:
        """Run a historical query off the event loop."""
        return await asyncio.to_thread(
            self.query_engine.query,
            source=source, level=level, search=search, time_range=time_range, limit=limit,
        )

    async def export(self, **filters) -> bytes:
        return await asyncio.to_thread(self.query_engine.export, **filters)

    async def stats(self) -> Dict[str, Any]:
        """Aggregate counts from the store plus the live alert window counts."""
        stats = await asyncio.to_thread(self.query_engine.stats)
        stats.update(self.alerts.stats())
        return stats

    async def sources(self) -> List[str]:
        return await asyncio.to_thread(self.store.list_sources)

    async def prune(self) -> int:
        removed = await asyncio.to_thread(self.store.prune)
        return len(removed)
