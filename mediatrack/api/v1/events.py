"""WebSocket transport for the event broadcaster.

On connect the client joins the global topic and receives a ``snapshot`` of
every job. It can then send

    {"action": "subscribe", "job_id": "..."}
    {"action": "unsubscribe", "job_id": "..."}

to join or leave a job's topic, or

    {"action": "subscribe", "topic": "global"}
    {"action": "unsubscribe", "topic": "global"}

to join or leave the global topic. Joining any topic sends its snapshot first.
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from mediatrack.jobs.broadcaster import GLOBAL_TOPIC, Subscription

logger = logging.getLogger(__name__)

router = APIRouter()

# Wired in during lifespan
_registry = None


def set_registry(registry):
    global _registry
    _registry = registry


async def _pump(websocket: WebSocket, subscription: Subscription) -> None:
    async for event in subscription:
        await websocket.send_json(event.to_message())


@router.websocket("/events")
async def events(websocket: WebSocket):
    await websocket.accept()
    if _registry is None:
        await websocket.close(code=1013)
        return

    subscription = _registry.broadcaster.open()
    _registry.watch_all(subscription)
    sender = asyncio.create_task(_pump(websocket, subscription))
    logger.info(
        f"Event client connected ({subscription.id}), "
        f"{_registry.broadcaster.subscriber_count(GLOBAL_TOPIC)} on the global topic"
    )

    try:
        while True:
            raw = await websocket.receive_json()
            message = raw if isinstance(raw, dict) else {}
            action = message.get("action")
            job_id = message.get("job_id")
            topic = message.get("topic")

            if action == "subscribe" and topic == GLOBAL_TOPIC:
                _registry.watch_all(subscription)
            elif action == "unsubscribe" and topic == GLOBAL_TOPIC:
                _registry.unwatch_all(subscription)
            elif action == "subscribe" and job_id:
                snapshot = await _registry.watch(subscription, job_id)
                if snapshot is None:
                    await websocket.send_json(
                        {"kind": "error", "job_id": job_id, "detail": "Job not found"}
                    )
            elif action == "unsubscribe" and job_id:
                _registry.unwatch(subscription, job_id)
            else:
                await websocket.send_json(
                    {"kind": "error", "detail": f"Unsupported message: {raw!r}"}
                )
    except WebSocketDisconnect:
        pass
    finally:
        _registry.broadcaster.close(subscription)
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.debug(f"Event sender for {subscription.id} ended with {exc!r}")
        logger.info(f"Event client disconnected ({subscription.id})")
