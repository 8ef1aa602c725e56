"""
FastAPI routes and endpoints for the logrelay ingestion server.

This module defines the HTTP API (ingestion, queries, export, sources, stats)
and the WebSocket channel used for live fan-out. All JSON responses use the
``{success, data?, error?}`` envelope.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from . import __version__
from .alerts import AlertMonitor
from .config import Config
from .errors import StorageError, ValidationError
from .file_store import RotatingFileStore
from .hub import Connection, ConnectionHub
from .models import ApiResponse, HealthResponse, LogSubmission
from .query import QueryEngine
from .service import IngestionService

logger = logging.getLogger(__name__)


def build_service(config: Config) -> IngestionService:
    """Wire the store, query engine, hub and alert monitor together."""
    store = RotatingFileStore(config.storage)
    return IngestionService(
        store=store,
        query_engine=QueryEngine(store),
        hub=ConnectionHub(
            max_connections=config.server.max_connections,
            outbox_size=config.server.outbox_size,
        ),
        alerts=AlertMonitor(config.alerts),
    )


def create_app(config: Config, service: Optional[IngestionService] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Loaded configuration
        service: Pre-built ingestion service (built from ``config`` when omitted)

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    service = service or build_service(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = asyncio.create_task(_retention_loop(service, config.storage.prune_interval))
        try:
            yield
        finally:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass

    app = FastAPI(
        title="logrelay",
        description="Log ingestion, storage, query and real-time fan-out service",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.service = service

    _add_exception_handlers(app)
    _add_routes(app, service)
    _add_websocket(app, service)

    return app


async def _retention_loop(service: IngestionService, interval: float) -> None:
    """Run the retention sweep immediately and then every ``interval`` seconds."""
    while True:
        try:
            await service.prune()
        except Exception as e:
            logger.error(f"Retention sweep failed: {e}")
        await asyncio.sleep(interval)


def _error_response(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiResponse(success=False, error=error).model_dump(exclude_none=True),
    )


def _add_exception_handlers(app: FastAPI) -> None:
    """Map logrelay errors onto ``{success: false, error}`` responses."""

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        return _error_response(400, str(exc))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        problems = "; ".join(err.get('msg', 'invalid request') for err in exc.errors())
        return _error_response(400, problems or "invalid request")

    @app.exception_handler(StorageError)
    async def handle_storage_error(request: Request, exc: StorageError):
        logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
        return _error_response(500, "Failed to access log storage")


def _add_routes(app: FastAPI, service: IngestionService) -> None:
    """Add all HTTP routes to the FastAPI application."""

    @app.post("/api/logs", response_model=ApiResponse, response_model_exclude_none=True)
    async def submit_log(log_submission: LogSubmission):
        """Endpoint for producers to submit one log event."""
        try:
            event = await service.ingest(log_submission)
        except (ValidationError, StorageError):
            raise
        except Exception as e:
            logger.error(f"Error adding log entry: {e}")
            return _error_response(500, "Failed to add log entry")
        return ApiResponse(success=True, data=event.to_record())

    @app.get("/api/logs/sources", response_model=ApiResponse, response_model_exclude_none=True)
    async def get_sources():
        """List the sources that have stored logs."""
        return ApiResponse(success=True, data=await service.sources())

    @app.get("/api/logs/stats", response_model=ApiResponse, response_model_exclude_none=True)
    async def get_stats():
        """Totals by source and level plus the current alert window counts."""
        return ApiResponse(success=True, data=await service.stats())

    @app.get("/api/logs/export")
    @app.get("/api/logs/export/{source}")
    async def export_logs(source: Optional[str] = None,
                          level: Optional[str] = None,
                          search: Optional[str] = None,
                          time_range: Optional[str] = Query(default=None, alias="timeRange")):
        """Download matching logs as a JSON array file."""
        content = await service.export(source=source, level=level, search=search, time_range=time_range)
        filename = service.query_engine.export_filename()
        return Response(
            content=content,
            media_type="application/json",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.get("/api/logs", response_model=ApiResponse, response_model_exclude_none=True)
    @app.get("/api/logs/{source}", response_model=ApiResponse, response_model_exclude_none=True)
    async def get_logs(source: Optional[str] = None,
                       level: Optional[str] = None,
                       search: Optional[str] = None,
                       time_range: Optional[str] = Query(default=None, alias="timeRange"),
                       limit: Optional[int] = Query(default=None, ge=0)):
        """Query stored logs, newest first."""
        events = await service.query(
            source=source, level=level, search=search, time_range=time_range, limit=limit,
        )
        return ApiResponse(success=True, data=[e.to_record() for e in events])

    @app.get("/api/storage/info")
    async def get_storage_info():
        """Get information about log storage."""
        info = await asyncio.to_thread(service.store.get_storage_info)
        return JSONResponse(content=info)

    @app.get("/api/websocket/info")
    async def get_websocket_info():
        """Get information about WebSocket connections."""
        return JSONResponse(content=service.hub.get_connection_info())

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            service="logrelay",
            timestamp=datetime.now(timezone.utc).isoformat(),
            connected_clients=service.hub.get_connection_count(),
            sources=await service.sources(),
        )


def _add_websocket(app: FastAPI, service: IngestionService) -> None:
    """Add the real-time channel endpoint."""
    hub = service.hub

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """WebSocket endpoint for live logs, rooms, filters and stats."""
        if hub.is_connection_limit_reached():
            await websocket.close(code=1013, reason="Server overloaded")
            return

        await websocket.accept()
        connection = hub.connect(websocket)

        try:
            while True:
                text = await websocket.receive_text()
                await _handle_frame(service, connection, text)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error(f"WebSocket error: {e}")
        finally:
            await hub.disconnect(connection)


async def _handle_frame(service: IngestionService, connection: Connection, text: str) -> None:
    """Dispatch one client frame of the form ``{"event": name, "data": payload}``."""
    hub = service.hub

    try:
        frame = json.loads(text)
    except ValueError:
        hub.send(connection, 'error', {'message': 'Malformed frame: expected JSON'})
        return
    if not isinstance(frame, dict) or not isinstance(frame.get('event'), str):
        hub.send(connection, 'error', {'message': 'Malformed frame: missing event name'})
        return

    event_name = frame['event']
    data: Any = frame.get('data')

    if event_name in ('join-room', 'leave-room'):
        if not isinstance(data, str) or not data.strip():
            hub.send(connection, 'error', {'message': f'{event_name} requires a room name'})
        elif event_name == 'join-room':
            hub.join(connection, data)
        else:
            hub.leave(connection, data)

    elif event_name == 'new-log':
        # Every new-log gets exactly one log-ack; producers acknowledge their buffer on it
        try:
            await service.ingest(data if isinstance(data, dict) else {})
        except ValidationError as e:
            hub.send(connection, 'error', {'message': 'Invalid log event', 'error': str(e)})
            hub.send(connection, 'log-ack', {'ok': False, 'status': 400, 'error': str(e)})
        except StorageError as e:
            logger.error(f"Failed to store log from WebSocket {connection.id}: {e}")
            hub.send(connection, 'error', {'message': 'Failed to store log', 'error': str(e)})
            hub.send(connection, 'log-ack', {'ok': False, 'status': 500, 'error': str(e)})
        else:
            hub.send(connection, 'log-ack', {'ok': True, 'status': 200})

    elif event_name == 'filter-logs':
        criteria = data if isinstance(data, dict) else {}
        limit = criteria.get('limit')
        try:
            events = await service.query(
                source=criteria.get('source') or None,
                level=criteria.get('level') or None,
                search=criteria.get('search') or None,
                time_range=criteria.get('timeRange') or None,
                limit=limit if isinstance(limit, int) else None,
            )
        except (ValidationError, StorageError) as e:
            hub.send(connection, 'error', {'message': 'Failed to fetch logs', 'error': str(e)})
            return
        hub.send(connection, 'filtered-logs', [e.to_record() for e in events])

    elif event_name == 'get-stats':
        try:
            stats = await service.stats()
        except StorageError as e:
            hub.send(connection, 'error', {'message': 'Failed to fetch stats', 'error': str(e)})
            return
        hub.send(connection, 'stats', stats)

    else:
        hub.send(connection, 'error', {'message': f'Unknown event: {event_name}'})
