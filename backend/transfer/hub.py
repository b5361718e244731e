"""Broadcast hub: fans one message out to every live subscriber."""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field

from config import SSE_KEEPALIVE, SUBSCRIBER_QUEUE_SIZE

logger = logging.getLogger(__name__)


def format_event(message: dict) -> str:
    """Frame a message as a Server-Sent Events `data:` record."""
    return f"data: {json.dumps(message)}\n\n"


KEEPALIVE_FRAME = ": keepalive\n\n"


class QueueSink:
    """Sink backed by a bounded queue; a full queue counts as a failed write."""

    def __init__(self, maxsize: int = SUBSCRIBER_QUEUE_SIZE) -> None:
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)

    async def send(self, frame: str) -> None:
        self.queue.put_nowait(frame)


@dataclass(eq=False)
class Client:
    sink: object  # anything with `async send(frame: str)`
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


class BroadcastHub:
    """Set of subscribers; a subscriber whose sink fails is dropped."""

    def __init__(self, keepalive: float = SSE_KEEPALIVE) -> None:
        self._clients: set[Client] = set()
        self._keepalive = keepalive

    def __len__(self) -> int:
        return len(self._clients)

    @property
    def clients(self) -> set[Client]:
        return set(self._clients)

    def add(self, sink) -> Client:
        client = Client(sink=sink)
        self._clients.add(client)
        logger.info(f"Subscriber {client.id} connected. Total: {len(self._clients)}")
        return client

    def remove(self, client: Client) -> None:
        if client in self._clients:
            self._clients.discard(client)
            logger.info(f"Subscriber {client.id} disconnected. Total: {len(self._clients)}")

    async def publish(self, message: dict) -> int:
        """Write `message` to every subscriber; returns how many received it."""
        frame = format_event(message)
        dead: list[Client] = []
        for client in list(self._clients):
            try:
                await client.sink.send(frame)
            except Exception as e:
                logger.debug(f"Dropping subscriber {client.id}: {e!r}")
                dead.append(client)
        for client in dead:
            self.remove(client)
        return len(self._clients)

    async def subscribe(self):
        """
        Yield SSE frames for one subscriber until it goes away.

        The first frame announces the subscriber id; silence longer than the
        keepalive interval yields a comment frame so proxies keep the stream open.
        """
        sink = QueueSink()
        client = self.add(sink)
        try:
            yield format_event({"type": "connected", "clientId": client.id})
            # A subscriber dropped by publish() drains what it has, then ends.
            while client in self._clients or not sink.queue.empty():
                try:
                    frame = await asyncio.wait_for(sink.queue.get(), timeout=self._keepalive)
                except asyncio.TimeoutError:
                    if client not in self._clients:
                        break
                    frame = KEEPALIVE_FRAME
                yield frame
        finally:
            self.remove(client)
