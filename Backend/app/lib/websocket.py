from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Union
import asyncio
import json
import uuid

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel
from starlette.websockets import WebSocketState

from app.core.logging import log


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


Event = Union[BaseModel, Dict[str, Any]]


def serialize_event(event: Event) -> str:
    """Encode an outbound event once, camelCase keys, unset fields dropped."""
    if isinstance(event, BaseModel):
        return event.model_dump_json(by_alias=True, exclude_none=True)
    return json.dumps(event)


class Connection:
    """
    One live WebSocket plus the relay's per-connection bookkeeping.

    `is_alive` is the liveness flag: the monitor clears it before each probe
    and an inbound `pong` sets it again.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.user_id: Optional[str] = None
        self.state = ConnectionState.CONNECTING
        self.is_alive = True
        # Declared channel interest; informational only, never used to filter delivery
        self.channels: Set[str] = set()
        self.connected_at = datetime.now(timezone.utc)

    @property
    def is_authenticated(self) -> bool:
        return self.state == ConnectionState.AUTHENTICATED

    @property
    def is_open(self) -> bool:
        if self.state == ConnectionState.CLOSED:
            return False
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, payload: str) -> None:
        await self.websocket.send_text(payload)

    async def send(self, event: Event) -> None:
        await self.send_text(serialize_event(event))

    async def terminate(self, code: int = 1001) -> None:
        """Drop the socket without waiting on the peer."""
        self.state = ConnectionState.CLOSED
        if self.websocket.application_state != WebSocketState.CONNECTED:
            return
        try:
            await self.websocket.close(code=code)
        except (RuntimeError, OSError, WebSocketDisconnect):
            # Peer already gone
            pass

    def __repr__(self) -> str:
        return f"<Connection {self.id[:8]} user={self.user_id} state={self.state.value}>"


class ConnectionRegistry:
    """
    Per-user WebSocket connection registry.

    - Each user_id maps to the set of its authenticated connections.
    - A user_id is present only while its set is non-empty.
    - A connection belongs to at most one user's set.
    """

    def __init__(self) -> None:
        # user_id -> set[Connection]
        self.active_connections: Dict[str, Set[Connection]] = {}
        self._lock = asyncio.Lock()

    async def add(self, user_id: str, connection: Connection) -> None:
        async with self._lock:
            if connection.user_id is not None and connection.user_id != user_id:
                self._discard(connection)
            connection.user_id = user_id
            self.active_connections.setdefault(user_id, set()).add(connection)

    async def remove(self, connection: Connection) -> None:
        """Thread-safe removal; no-op for connections that never authenticated."""
        async with self._lock:
            self._discard(connection)

    def _discard(self, connection: Connection) -> None:
        user_id = connection.user_id
        if user_id is None:
            return
        connections = self.active_connections.get(user_id)
        if connections is None:
            return
        connections.discard(connection)
        if not connections:
            del self.active_connections[user_id]

    async def send_to_user(self, user_id: str, event: Event) -> int:
        """
        Send an event to every open connection of `user_id`.
        Returns the number of connections it was written to.
        """
        # Take a snapshot under lock to avoid iteration issues
        async with self._lock:
            connections = list(self.active_connections.get(user_id, ()))
        if not connections:
            return 0
        return await self.deliver(connections, serialize_event(event))

    async def broadcast(self, event: Event) -> int:
        """Send an event to every registered connection across all users."""
        async with self._lock:
            connections = [c for group in self.active_connections.values() for c in group]
        return await self.deliver(connections, serialize_event(event))

    async def deliver(self, connections: Iterable[Connection], payload: str) -> int:
        delivered = 0
        disconnected: List[Connection] = []

        for connection in connections:
            if not connection.is_open:
                continue
            try:
                await connection.send_text(payload)
                delivered += 1
            except Exception as e:
                log("REALTIME", f"Send failed on {connection!r}: {e}", user_id=connection.user_id)
                disconnected.append(connection)

        # Clean up dead connections
        for connection in disconnected:
            await self.remove(connection)

        return delivered

    def count_for(self, user_id: str) -> int:
        return len(self.active_connections.get(user_id, ()))

    def count_total(self) -> int:
        return sum(len(group) for group in self.active_connections.values())

    def user_ids(self) -> List[str]:
        return list(self.active_connections.keys())

    def contains(self, connection: Connection) -> bool:
        if connection.user_id is None:
            return False
        return connection in self.active_connections.get(connection.user_id, ())
