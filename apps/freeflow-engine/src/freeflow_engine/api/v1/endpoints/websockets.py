"""WebSocket endpoint streaming job snapshots and updates."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from freeflow_engine.core.jobs import Job, JobScheduler

logger = logging.getLogger(__name__)
router = APIRouter()


def job_message(job: Job) -> Dict[str, Any]:
    return {"type": "JOB_UPDATE", "payload": job.to_dict()}


def snapshot_message(scheduler: JobScheduler) -> Dict[str, Any]:
    """Full job list, sent once when a client connects."""
    return {
        "type": "JOB_SNAPSHOT",
        "payload": {
            "jobs": [j.to_dict() for j in scheduler.list_jobs()],
            "stats": scheduler.stats(),
            "running": scheduler.running_count,
            "maxConcurrent": scheduler.max_concurrent,
        },
    }


class JobFeed:
    """Fan-out of job updates to connected clients."""

    def __init__(self):
        self.clients: List[WebSocket] = []
        self._outbox: Optional[asyncio.Queue] = None
        self._sender: Optional[asyncio.Task] = None

    async def connect(self, websocket: WebSocket, scheduler: JobScheduler) -> None:
        await websocket.accept()
        await websocket.send_json(snapshot_message(scheduler))
        self.clients.append(websocket)
        logger.info("Feed client connected. Total: %d", len(self.clients))

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self.clients:
            self.clients.remove(websocket)
            logger.info("Feed client disconnected. Total: %d", len(self.clients))

    async def publish(self, message: Dict[str, Any]) -> None:
        stale = []
        for client in list(self.clients):
            try:
                await client.send_json(message)
            except Exception as e:
                logger.debug("Dropping feed client: %s", e)
                stale.append(client)
        for client in stale:
            self.disconnect(client)

    def enqueue(self, message: Dict[str, Any]) -> None:
        """Queue a message for delivery in order by the single sender task."""
        loop = asyncio.get_running_loop()
        if self._sender is None or self._sender.done() or self._sender.get_loop() is not loop:
            self._outbox = asyncio.Queue()
            self._sender = loop.create_task(self._send_loop(self._outbox))
        self._outbox.put_nowait(message)

    async def _send_loop(self, outbox: asyncio.Queue) -> None:
        while True:
            message = await outbox.get()
            await self.publish(message)
            outbox.task_done()

    async def close(self) -> None:
        """Stop the sender task; undelivered messages are dropped."""
        sender, self._sender, self._outbox = self._sender, None, None
        if sender is None or sender.done():
            return
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)


feed = JobFeed()


def job_update_listener(job: Job) -> None:
    """Scheduler listener: push the new job state to every feed client."""
    if not feed.clients:
        return
    try:
        feed.enqueue(job_message(job))
    except RuntimeError:
        logger.warning("Job %s changed outside the event loop; update not streamed", job.id)


@router.websocket("/ws")
async def job_feed(websocket: WebSocket):
    scheduler = JobScheduler.get_instance()
    await feed.connect(websocket, scheduler)
    try:
        while True:
            text = await websocket.receive_text()
            if text == "ping":
                await websocket.send_json({"type": "PONG"})
            elif text == "snapshot":
                await websocket.send_json(snapshot_message(scheduler))
    except WebSocketDisconnect:
        feed.disconnect(websocket)
