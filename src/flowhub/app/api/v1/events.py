"""SSE Events API endpoints.

Provides real-time feeds via Server-Sent Events, one subscription per
connection on the in-process event fan-out:

    /events/status                      status changes of every instance
    /events/instances/{id}/logs         log entries of one instance
    /events/instances/{id}/metrics      metrics samples of one instance
    /events/instances/{id}/health       health probes of one instance
    /events/alerts?level=               alerts (all levels unless filtered)

Each event is sent as a ``data: <json>`` frame; a heartbeat comment keeps
idle connections open. The subscription is removed when the client
disconnects.

Configuration via SubscriptionConfig (FLOWHUB_SUBSCRIPTIONS_ env prefix).
"""

import asyncio
import logging
from typing import Annotated, AsyncGenerator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from flowhub.app.config import get_settings
from flowhub.app.dependencies import get_fanout, get_lifecycle
from flowhub.core.domain.instance import AlertLevel, Topic
from flowhub.core.logging_schema import Component, LogEvent
from flowhub.core.models import generate_ulid
from flowhub.services.fanout import EventFanout
from flowhub.services.lifecycle import LifecycleManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])

Fanout = Annotated[EventFanout, Depends(get_fanout)]
Lifecycle = Annotated[LifecycleManager, Depends(get_lifecycle)]

_subscription_config = get_settings().subscriptions

_POLL_INTERVAL = 1.0
_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def event_stream(
    request: Request,
    fanout: EventFanout,
    topic: Topic,
    instance_id: str | None = None,
    level: AlertLevel | None = None,
    heartbeat_interval: float | None = None,
) -> AsyncGenerator[str, None]:
    """Generate SSE frames for one subscription.

    Yields:
    - ``: connected`` comment once
    - ``data: <event json>`` per delivered event
    - ``: heartbeat`` comment every heartbeat_interval

    Ends when the client disconnects or the fan-out closes the feed.
    """
    connection_id = generate_ulid()
    heartbeat = heartbeat_interval or _subscription_config.heartbeat_interval
    subscription = fanout.subscribe(connection_id, topic, instance_id, level)
    log_extra = {
        "component": Component.SSE,
        "connection_id": connection_id,
        "key": subscription.key,
    }
    logger.info(
        "SSE client connected",
        extra={**log_extra, "event": LogEvent.SUBSCRIBER_ATTACHED},
    )

    try:
        loop = asyncio.get_running_loop()
        last_heartbeat = loop.time()

        yield ": connected\n\n"

        while True:
            if await request.is_disconnected():
                break

            event = await subscription.get(timeout=_POLL_INTERVAL)
            if event is not None:
                yield f"data: {event.model_dump_json()}\n\n"
            elif subscription.closed:
                break

            now = loop.time()
            if now - last_heartbeat >= heartbeat:
                yield ": heartbeat\n\n"
                last_heartbeat = now
    finally:
        fanout.unsubscribe(connection_id)
        logger.info(
            "SSE client disconnected",
            extra={
                **log_extra,
                "event": LogEvent.SUBSCRIBER_DETACHED,
                "dropped": subscription.dropped,
            },
        )


def _sse(generator: AsyncGenerator[str, None]) -> StreamingResponse:
    return StreamingResponse(
        generator, media_type="text/event-stream", headers=_SSE_HEADERS
    )


@router.get("/status")
async def status_events(request: Request, fanout: Fanout) -> StreamingResponse:
    """Status changes of every instance."""
    return _sse(event_stream(request, fanout, Topic.STATUS))


@router.get("/instances/{instance_id}/logs")
async def log_events(
    instance_id: str, request: Request, fanout: Fanout, lifecycle: Lifecycle
) -> StreamingResponse:
    await lifecycle.get(instance_id)
    return _sse(event_stream(request, fanout, Topic.LOGS, instance_id))


@router.get("/instances/{instance_id}/metrics")
async def metrics_events(
    instance_id: str, request: Request, fanout: Fanout, lifecycle: Lifecycle
) -> StreamingResponse:
    await lifecycle.get(instance_id)
    return _sse(event_stream(request, fanout, Topic.METRICS, instance_id))


@router.get("/instances/{instance_id}/health")
async def health_events(
    instance_id: str, request: Request, fanout: Fanout, lifecycle: Lifecycle
) -> StreamingResponse:
    await lifecycle.get(instance_id)
    return _sse(event_stream(request, fanout, Topic.HEALTH, instance_id))


@router.get("/alerts")
async def alert_events(
    request: Request, fanout: Fanout, level: AlertLevel | None = None
) -> StreamingResponse:
    """Alerts of one level, or of every level when ``level`` is omitted."""
    return _sse(event_stream(request, fanout, Topic.ALERTS, level=level))
