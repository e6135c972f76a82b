from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Union

from src.app.ports.output import IObserverChannel, IVehicleEventPublisher
from src.domain.models import EventKind, Vehicle, VehicleEvent

logger = logging.getLogger(__name__)


class SnapshotSource(Protocol):
    def get_snapshot(self, vehicle_id: str) -> Vehicle: ...


# Vehicle events, or ready-made frames such as protocol errors.
Outbound = Union[VehicleEvent, Mapping[str, Any]]


@dataclass(slots=True)
class _Connection:
    connection_id: str
    channel: IObserverChannel
    queue: asyncio.Queue[Outbound]
    watching: set[str] = field(default_factory=set)
    task: asyncio.Task[None] | None = None
    dropped: int = 0


@dataclass(slots=True)
class SubscriptionBroker(IVehicleEventPublisher):
    """Per-vehicle rooms of observer connections.

    Each connection owns a bounded FIFO queue drained by its own sender task,
    so publish never waits on a slow observer and per-vehicle order is kept.
    Delivery is best-effort: a full queue drops the event for that observer
    only, and a failing channel disconnects only that observer.
    """

    snapshots: SnapshotSource
    max_pending: int = 100

    _connections: dict[str, _Connection] = field(default_factory=dict, init=False, repr=False)
    _rooms: dict[str, set[str]] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def connect(self, connection_id: str, channel: IObserverChannel) -> None:
        """Register a connection. Must be called from the running event loop."""

        conn = _Connection(
            connection_id=connection_id,
            channel=channel,
            queue=asyncio.Queue(maxsize=self.max_pending),
        )
        with self._lock:
            if connection_id in self._connections:
                raise RuntimeError(f"Connection {connection_id} already connected")
            self._connections[connection_id] = conn
        conn.task = asyncio.get_running_loop().create_task(
            self._deliver(conn), name=f"observer-{connection_id}"
        )
        logger.debug("Observer %s connected", connection_id)

    def join(self, connection_id: str, vehicle_id: str) -> Vehicle:
        """Watch a vehicle and queue its current snapshot, which is never dropped."""

        with self._lock:
            conn = self._connections.get(connection_id)
            if conn is None:
                raise RuntimeError(f"Connection {connection_id} is not connected")

            # Raises NotFoundError for unknown ids before any membership change.
            snapshot = self.snapshots.get_snapshot(vehicle_id)

            self._enqueue_snapshot(conn, VehicleEvent(EventKind.SNAPSHOT, snapshot))
            conn.watching.add(vehicle_id)
            self._rooms.setdefault(vehicle_id, set()).add(connection_id)

        logger.debug("Observer %s joined %s", connection_id, vehicle_id)
        return snapshot

    def leave(self, connection_id: str, vehicle_id: str) -> None:
        with self._lock:
            conn = self._connections.get(connection_id)
            if conn is not None:
                conn.watching.discard(vehicle_id)
            self._discard_member(vehicle_id, connection_id)

    def disconnect(self, connection_id: str) -> None:
        with self._lock:
            conn = self._connections.pop(connection_id, None)
            if conn is None:
                return
            for vehicle_id in conn.watching:
                self._discard_member(vehicle_id, connection_id)
            conn.watching.clear()

            # Pending events are discarded, not replayed on a later join.
            while True:
                try:
                    conn.queue.get_nowait()
                except asyncio.QueueEmpty:
                    break
                conn.queue.task_done()

        task = conn.task
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()

        if conn.dropped:
            logger.info(
                "Observer %s disconnected after dropping %d events",
                connection_id,
                conn.dropped,
            )
        else:
            logger.debug("Observer %s disconnected", connection_id)

    def notify(self, connection_id: str, message: Mapping[str, Any]) -> None:
        """Queue a frame for one connection, behind its pending events."""

        with self._lock:
            conn = self._connections.get(connection_id)
            if conn is not None:
                self._enqueue(conn, message)

    def publish(self, vehicle_id: str, event: VehicleEvent) -> None:
        with self._lock:
            for connection_id in self._rooms.get(vehicle_id, ()):
                conn = self._connections.get(connection_id)
                if conn is not None:
                    self._enqueue(conn, event)

    def subscribers(self, vehicle_id: str) -> frozenset[str]:
        with self._lock:
            return frozenset(self._rooms.get(vehicle_id, ()))

    def watching(self, connection_id: str) -> frozenset[str]:
        with self._lock:
            conn = self._connections.get(connection_id)
            return frozenset(conn.watching) if conn is not None else frozenset()

    async def flush(self) -> None:
        """Wait until every queued event has been handed to its channel."""

        with self._lock:
            queues = [c.queue for c in self._connections.values()]
        await asyncio.gather(*(q.join() for q in queues))

    async def close(self) -> None:
        with self._lock:
            conns = list(self._connections.values())
        for conn in conns:
            self.disconnect(conn.connection_id)
        tasks = [c.task for c in conns if c.task is not None]
        await asyncio.gather(*tasks, return_exceptions=True)

    def _discard_member(self, vehicle_id: str, connection_id: str) -> None:
        members = self._rooms.get(vehicle_id)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[vehicle_id]

    def _enqueue_snapshot(self, conn: _Connection, snapshot: VehicleEvent) -> None:
        """Queue a join snapshot, making room on a full queue.

        Pending events for the same vehicle are discarded first, since the
        snapshot supersedes them; failing that, the oldest pending event is.
        """

        if not conn.queue.full():
            conn.queue.put_nowait(snapshot)
            return

        pending: list[Outbound] = []
        while not conn.queue.empty():
            pending.append(conn.queue.get_nowait())

        kept = [
            e
            for e in pending
            if not (isinstance(e, VehicleEvent) and e.vehicle_id == snapshot.vehicle_id)
        ]
        if len(kept) == len(pending):
            kept = kept[1:]
        conn.dropped += len(pending) - len(kept)
        logger.warning(
            "Observer %s is too slow; discarded %d pending events to join %s",
            conn.connection_id,
            len(pending) - len(kept),
            snapshot.vehicle_id,
        )
        for event in kept:
            conn.queue.put_nowait(event)
        conn.queue.put_nowait(snapshot)

        # Settle drained items only after re-queueing: the unfinished count
        # must not touch zero while a flush waits on it.
        for _ in pending:
            conn.queue.task_done()

    def _enqueue(self, conn: _Connection, item: Outbound) -> None:
        try:
            conn.queue.put_nowait(item)
        except asyncio.QueueFull:
            conn.dropped += 1
            if isinstance(item, VehicleEvent):
                what = f"{item.kind.value} for {item.vehicle_id}"
            else:
                what = str(item.get("type", "frame"))
            logger.warning("Observer %s is too slow; dropped %s", conn.connection_id, what)

    async def _deliver(self, conn: _Connection) -> None:
        while True:
            item = await conn.queue.get()
            message = item.to_message() if isinstance(item, VehicleEvent) else dict(item)
            try:
                await conn.channel.send(message)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning(
                    "Delivery to observer %s failed; disconnecting",
                    conn.connection_id,
                    exc_info=True,
                )
                self.disconnect(conn.connection_id)
                return
            finally:
                conn.queue.task_done()
