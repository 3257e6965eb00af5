"""
AlertBroadcaster - best-effort fan-out of alert events to WebSocket observers.

Connection lifecycle:

    CONNECTING -> AUTHENTICATED -> OPEN -> CLOSED

Identity is resolved before the upgrade is accepted; a caller without one is
closed pre-accept, which the server turns into an HTTP 403 on the handshake.

``publish`` is safe to call from any thread. It serializes the event once and
hands the payload to every open connection's bounded queue via the
connection's event loop; a per-connection writer task drains the queue. A
slow observer therefore only ever fills its own queue, and an overflowing or
failing connection is closed and reaped without affecting the others.
"""

from __future__ import annotations

import asyncio
import json
import threading
from enum import Enum
from typing import Dict, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect, status
from fastapi.requests import HTTPConnection

from domain.models import AlertEvent, AlertType
from ports.alert_publisher import AlertPublisherPort  # noqa: F401 (runtime_checkable)
from ports.identity import IdentityResolverPort
from shared_utils.constants import Defaults, LogScope
from shared_utils.logging_utils import get_scoped_logger

logger = get_scoped_logger(LogScope.BROADCAST)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    OPEN = "open"
    CLOSED = "closed"


class ObserverConnection:
    """One observer socket with its own outbound queue."""

    def __init__(
        self,
        websocket: WebSocket,
        loop: asyncio.AbstractEventLoop,
        queue_size: int = Defaults.BROADCAST_QUEUE_SIZE,
    ) -> None:
        self.websocket = websocket
        self.user_id: Optional[str] = None
        self.state = ConnectionState.CONNECTING
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN

    def offer(self, payload: str) -> None:
        """Schedule *payload* for delivery; callable from any thread."""
        self._loop.call_soon_threadsafe(self._enqueue, payload)

    def _enqueue(self, payload: str) -> None:
        if not self.is_open:
            return
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning("observer_queue_overflow", user_id=self.user_id)
            self.mark_closed()

    def mark_closed(self) -> None:
        if self.state == ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        try:
            # wake the writer so it can exit
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

    async def run_writer(self) -> None:
        """Drain the queue onto the socket until closed or a send fails."""
        while True:
            payload = await self._queue.get()
            if payload is None or not self.is_open:
                return
            try:
                await self.websocket.send_text(payload)
            except Exception as exc:
                logger.warning(
                    "observer_send_failed", user_id=self.user_id, error=str(exc)
                )
                self.mark_closed()
                return


class AlertBroadcaster:
    """Registry of observer connections implementing AlertPublisherPort."""

    def __init__(
        self,
        *,
        identity: IdentityResolverPort,
        queue_size: int = Defaults.BROADCAST_QUEUE_SIZE,
    ) -> None:
        self._identity = identity
        self._queue_size = queue_size
        self._connections: Set[ObserverConnection] = set()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Observer side
    # ------------------------------------------------------------------

    async def connect(self, websocket: WebSocket) -> Optional[ObserverConnection]:
        """Authenticate, accept and register an observer.

        Returns:
            The open connection, or None if the caller was rejected.
        """
        conn = ObserverConnection(
            websocket, asyncio.get_running_loop(), queue_size=self._queue_size
        )
        user_id = self._identity.resolve_identity(request_metadata(websocket))
        if not user_id:
            logger.warning("observer_rejected", reason="unauthenticated")
            conn.state = ConnectionState.CLOSED
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return None

        conn.user_id = user_id
        conn.state = ConnectionState.AUTHENTICATED
        await websocket.accept()
        conn.state = ConnectionState.OPEN
        with self._lock:
            self._connections.add(conn)

        await websocket.send_text(
            json.dumps({"type": AlertType.CONNECTED.value, "userId": user_id})
        )
        logger.info(
            "observer_connected", user_id=user_id, connections=self.connection_count
        )
        return conn

    async def serve(self, websocket: WebSocket) -> None:
        """Run one observer connection until either side goes away."""
        conn = await self.connect(websocket)
        if conn is None:
            return

        writer = asyncio.create_task(conn.run_writer())
        reader = asyncio.create_task(_drain_incoming(websocket))
        try:
            await asyncio.wait({writer, reader}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            conn.mark_closed()
            self._unregister(conn)
            for task in (writer, reader):
                task.cancel()
            await asyncio.gather(writer, reader, return_exceptions=True)
            logger.info(
                "observer_disconnected",
                user_id=conn.user_id,
                connections=self.connection_count,
            )

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    # ------------------------------------------------------------------
    # AlertPublisherPort implementation
    # ------------------------------------------------------------------

    def publish(self, event: AlertEvent) -> int:
        payload = json.dumps(event.to_wire())
        self._reap()
        with self._lock:
            targets = [c for c in self._connections if c.is_open]

        delivered = 0
        for conn in targets:
            try:
                conn.offer(payload)
                delivered += 1
            except RuntimeError as exc:
                # event loop already closed
                logger.warning(
                    "observer_offer_failed", user_id=conn.user_id, error=str(exc)
                )
                conn.state = ConnectionState.CLOSED

        logger.info(
            "alert_broadcast",
            alert_type=event.type.value,
            session_id=event.session_id,
            observers=delivered,
        )
        return delivered

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _unregister(self, conn: ObserverConnection) -> None:
        with self._lock:
            self._connections.discard(conn)

    def _reap(self) -> None:
        with self._lock:
            dead = {c for c in self._connections if not c.is_open}
            self._connections -= dead
        if dead:
            logger.info("observers_reaped", count=len(dead))


def request_metadata(connection: HTTPConnection) -> Dict[str, str]:
    """Lowercased headers plus query parameters, as seen by the identity port."""
    metadata = {k.lower(): v for k, v in connection.headers.items()}
    metadata.update(connection.query_params.items())
    return metadata


async def _drain_incoming(websocket: WebSocket) -> None:
    """Observers are receive-only; read until the peer disconnects."""
    try:
        while True:
            await websocket.receive_text()
    except (WebSocketDisconnect, RuntimeError):
        return
