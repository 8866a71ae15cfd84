# app/realtime/relay.py
"""
Realtime notification relay.

Per-connection lifecycle:

    CONNECTING -> UNAUTHENTICATED -> AUTHENTICATED -> CLOSED

- Admission: an optional `?token=` on the connect URL is checked right after
  accept. Success sends `connected`; absence or failure sends `auth_required`
  and the socket stays open for an in-channel `auth` message.
- Authentication failures and malformed frames are answered, never fatal.
- Any transition to CLOSED removes the connection from the registry.

Producers (webhooks, build and generation pipelines) push events through
`send_to_user` / `broadcast`, or `publish` / `publish_all` when they should not
wait on delivery.
"""
import asyncio
from typing import Awaitable, Callable, Dict, List, Optional, Set, Type

from fastapi import WebSocket, WebSocketDisconnect

from app.core.exceptions import ProtocolError, UnknownMessageTypeError
from app.core.logging import log
from app.lib.identity import UserIdentity
from app.lib.monitoring import RelayMetrics
from app.lib.websocket import (
    Connection,
    ConnectionRegistry,
    ConnectionState,
    Event,
    serialize_event,
)
from app.realtime.messages import (
    INBOUND_MESSAGES,
    AuthFailed,
    AuthMessage,
    AuthRequired,
    Authenticated,
    BuildProgress,
    BuildUpdate,
    Connected,
    Error,
    GenerationProgress,
    InboundMessage,
    PingMessage,
    Pong,
    PongMessage,
    PreviewUpdate,
    StoreUpdate,
    SubscribeMessage,
    Subscribed,
    UnknownMessageType,
    Unsubscribed,
    UnsubscribeMessage,
    now_ms,
    parse_inbound,
)

Handler = Callable[[Connection, InboundMessage], Awaitable[None]]


class RelayServer:
    """
    Owns every open Connection and drives its state machine.

    `resolver` is anything with `async resolve(token) -> Optional[UserIdentity]`.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        resolver,
        metrics: Optional[RelayMetrics] = None,
    ) -> None:
        self.registry = registry
        self.resolver = resolver
        self.metrics = metrics
        # connection id -> Connection, authenticated or not
        self._connections: Dict[str, Connection] = {}
        self._pending: Set[asyncio.Task] = set()

        self._handlers: Dict[Type[InboundMessage], Handler] = {
            AuthMessage: self._on_auth,
            PingMessage: self._on_ping,
            PongMessage: self._on_pong,
            SubscribeMessage: self._on_subscribe,
            UnsubscribeMessage: self._on_unsubscribe,
        }
        unhandled = set(INBOUND_MESSAGES.values()) - set(self._handlers)
        if unhandled:
            names = ", ".join(sorted(m.__name__ for m in unhandled))
            raise RuntimeError(f"No relay handler for inbound message(s): {names}")

    # ---------------------------------------------------------------------
    # Connection lifecycle
    # ---------------------------------------------------------------------

    async def handle(self, websocket: WebSocket, token: Optional[str] = None) -> None:
        """Serve one socket from accept to close."""
        await websocket.accept()
        connection = self.open(websocket)

        try:
            await self.admit(connection, token)

            while connection.state != ConnectionState.CLOSED:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break

                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                await self.dispatch(connection, raw)

        except WebSocketDisconnect:
            pass
        except Exception as e:
            log("REALTIME", f"Connection error on {connection!r}: {e}", user_id=connection.user_id)
        finally:
            await self.close(connection)

    def open(self, websocket: WebSocket) -> Connection:
        connection = Connection(websocket)
        connection.state = ConnectionState.UNAUTHENTICATED
        self._connections[connection.id] = connection
        self._update_metrics()
        log("DISPATCH", f"Opened {connection!r}")
        return connection

    async def admit(self, connection: Connection, token: Optional[str]) -> None:
        """Run the out-of-band admission token, if any."""
        if token:
            identity = await self.resolver.resolve(token)
            if identity is not None and await self._attach(connection, identity):
                await self._reply(connection, Connected(user_id=identity.id))
                return
        await self._reply(connection, AuthRequired())

    async def close(self, connection: Connection) -> None:
        """Transition to CLOSED. Safe to call more than once."""
        was_tracked = self._connections.pop(connection.id, None) is not None
        connection.state = ConnectionState.CLOSED
        await self.registry.remove(connection)
        self._update_metrics()
        if was_tracked and connection.user_id:
            log("REALTIME", "Connection closed", user_id=connection.user_id)

    async def terminate(self, connection: Connection) -> None:
        """Forced close: deregister first, then drop the socket."""
        await self.close(connection)
        await connection.terminate()

    async def _attach(self, connection: Connection, identity: UserIdentity) -> bool:
        # The socket may have closed while the resolver was awaited
        if connection.state == ConnectionState.CLOSED:
            return False
        await self.registry.add(identity.id, connection)
        connection.state = ConnectionState.AUTHENTICATED
        self._update_metrics()
        log("REALTIME", f"Authenticated ({self.registry.count_for(identity.id)} live)", user_id=identity.id)
        return True

    # ---------------------------------------------------------------------
    # Inbound control messages
    # ---------------------------------------------------------------------

    async def dispatch(self, connection: Connection, raw) -> None:
        """Handle one inbound frame. Protocol errors are answered, not raised."""
        # Any traffic proves the peer reachable
        connection.is_alive = True
        try:
            message = parse_inbound(raw)
        except UnknownMessageTypeError as e:
            log("DISPATCH", e.message, user_id=connection.user_id)
            await self._reply(connection, UnknownMessageType())
            return
        except ProtocolError as e:
            await self._reply(connection, Error(message=e.message))
            return

        try:
            await self._handlers[type(message)](connection, message)
        except Exception as e:
            log("REALTIME", f"Handler for '{type(message).__name__}' failed on {connection!r}: {e}", user_id=connection.user_id)
            await self._reply(connection, Error(message="Internal error"))

    async def _on_auth(self, connection: Connection, message: AuthMessage) -> None:
        identity = await self.resolver.resolve(message.token)
        if identity is not None and await self._attach(connection, identity):
            await self._reply(connection, Authenticated(user_id=identity.id))
        else:
            await self._reply(connection, AuthFailed())

    async def _on_ping(self, connection: Connection, message: PingMessage) -> None:
        await self._reply(connection, Pong(timestamp=now_ms()))

    async def _on_pong(self, connection: Connection, message: PongMessage) -> None:
        connection.is_alive = True

    async def _on_subscribe(self, connection: Connection, message: SubscribeMessage) -> None:
        if connection.is_authenticated and message.channel:
            connection.channels.add(message.channel)
            await self._reply(connection, Subscribed(channel=message.channel))

    async def _on_unsubscribe(self, connection: Connection, message: UnsubscribeMessage) -> None:
        if connection.is_authenticated and message.channel:
            connection.channels.discard(message.channel)
            await self._reply(connection, Unsubscribed(channel=message.channel))

    async def _reply(self, connection: Connection, message: Event) -> None:
        if not connection.is_open:
            return
        try:
            await connection.send(message)
        except Exception as e:
            log("REALTIME", f"Reply failed on {connection!r}: {e}", user_id=connection.user_id)
            await self.terminate(connection)

    # ---------------------------------------------------------------------
    # Outbound contract for producers
    # ---------------------------------------------------------------------

    async def send_to_user(self, user_id: str, event: Event) -> int:
        return await self.registry.send_to_user(user_id, event)

    async def broadcast(self, event: Event) -> int:
        """Every open socket, authenticated or not."""
        return await self.registry.deliver(self.connections(), serialize_event(event))

    def publish(self, user_id: str, event: Event) -> asyncio.Task:
        """Fire-and-forget send_to_user."""
        return self._spawn(self.send_to_user(user_id, event))

    def publish_all(self, event: Event) -> asyncio.Task:
        """Fire-and-forget broadcast."""
        return self._spawn(self.broadcast(event))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def send_build_update(
        self, user_id: str, build_id: str, status: str, artifact_url: Optional[str] = None
    ) -> int:
        return await self.send_to_user(
            user_id, BuildUpdate(build_id=build_id, status=status, artifact_url=artifact_url)
        )

    async def send_build_progress(self, user_id: str, build_id: str, progress: float, stage: str) -> int:
        return await self.send_to_user(
            user_id, BuildProgress(build_id=build_id, progress=progress, stage=stage)
        )

    async def send_preview_update(self, user_id: str, preview_id: str, status: str) -> int:
        return await self.send_to_user(user_id, PreviewUpdate(preview_id=preview_id, status=status))

    async def send_generation_progress(
        self, user_id: str, stage: str, percent: float, current_file: Optional[str] = None
    ) -> int:
        return await self.send_to_user(
            user_id, GenerationProgress(stage=stage, percent=percent, current_file=current_file)
        )

    async def send_store_update(self, user_id: str, submission_id: str, status: str) -> int:
        return await self.send_to_user(user_id, StoreUpdate(submission_id=submission_id, status=status))

    # ---------------------------------------------------------------------
    # Introspection
    # ---------------------------------------------------------------------

    def connections(self) -> List[Connection]:
        return list(self._connections.values())

    def count_sockets(self) -> int:
        return len(self._connections)

    def count_for(self, user_id: str) -> int:
        return self.registry.count_for(user_id)

    def count_total(self) -> int:
        return self.registry.count_total()

    def _update_metrics(self) -> None:
        if self.metrics is not None:
            self.metrics.set_connections(self.registry.count_total(), len(self._connections))
