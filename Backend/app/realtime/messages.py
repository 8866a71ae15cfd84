# app/realtime/messages.py
"""
Realtime wire messages.

Both directions are closed sets of tagged models keyed by `type`.
Inbound payloads go through `parse_inbound()`; outbound models serialize with
camelCase keys (`userId`, `buildId`, ...) and drop unset optional fields.
"""
import json
import time
from typing import Any, Dict, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from app.core.exceptions import ProtocolError, UnknownMessageTypeError


def now_ms() -> int:
    """Wall clock in epoch milliseconds."""
    return int(time.time() * 1000)


# ═══════════════════════════════════════════════════════
# INBOUND (client -> relay)
# ═══════════════════════════════════════════════════════

class InboundMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")


class AuthMessage(InboundMessage):
    type: Literal["auth"]
    # Left untyped: a malformed token is an auth failure, not a protocol error
    token: Any = None


class PingMessage(InboundMessage):
    type: Literal["ping"]


class PongMessage(InboundMessage):
    """Reply to a server liveness probe."""
    type: Literal["pong"]


class SubscribeMessage(InboundMessage):
    type: Literal["subscribe"]
    channel: Optional[str] = None


class UnsubscribeMessage(InboundMessage):
    type: Literal["unsubscribe"]
    channel: Optional[str] = None


INBOUND_MESSAGES: Dict[str, Type[InboundMessage]] = {
    "auth": AuthMessage,
    "ping": PingMessage,
    "pong": PongMessage,
    "subscribe": SubscribeMessage,
    "unsubscribe": UnsubscribeMessage,
}


def parse_inbound(raw: Union[str, bytes]) -> InboundMessage:
    """
    Decode one inbound frame.

    Raises:
        UnknownMessageTypeError: valid JSON object with an unrecognized `type`
        ProtocolError: anything that is not a well-formed JSON object
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError, RecursionError):
        raise ProtocolError()

    if not isinstance(data, dict):
        raise ProtocolError()

    message_type = data.get("type")
    model = INBOUND_MESSAGES.get(message_type) if isinstance(message_type, str) else None
    if model is None:
        raise UnknownMessageTypeError(message_type)

    try:
        return model.model_validate(data)
    except ValidationError:
        raise ProtocolError()


# ═══════════════════════════════════════════════════════
# OUTBOUND (relay -> client)
# ═══════════════════════════════════════════════════════

class OutboundMessage(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Protocol acknowledgements ---

class Connected(OutboundMessage):
    type: Literal["connected"] = "connected"
    user_id: str


class Authenticated(OutboundMessage):
    type: Literal["authenticated"] = "authenticated"
    user_id: str


class AuthFailed(OutboundMessage):
    type: Literal["auth_failed"] = "auth_failed"


class AuthRequired(OutboundMessage):
    type: Literal["auth_required"] = "auth_required"


class Pong(OutboundMessage):
    type: Literal["pong"] = "pong"
    timestamp: int


class Ping(OutboundMessage):
    """Server liveness probe; the client answers with `pong`."""
    type: Literal["ping"] = "ping"
    timestamp: int


class Subscribed(OutboundMessage):
    type: Literal["subscribed"] = "subscribed"
    channel: str


class Unsubscribed(OutboundMessage):
    type: Literal["unsubscribed"] = "unsubscribed"
    channel: str


class Error(OutboundMessage):
    type: Literal["error"] = "error"
    message: str


class UnknownMessageType(OutboundMessage):
    type: Literal["unknown_message_type"] = "unknown_message_type"


# --- Producer notifications ---

class BuildUpdate(OutboundMessage):
    type: Literal["build_update"] = "build_update"
    build_id: str
    status: str
    artifact_url: Optional[str] = None


class BuildProgress(OutboundMessage):
    type: Literal["build_progress"] = "build_progress"
    build_id: str
    progress: Union[int, float]
    stage: str


class PreviewUpdate(OutboundMessage):
    type: Literal["preview_update"] = "preview_update"
    preview_id: str
    status: str


class GenerationProgress(OutboundMessage):
    type: Literal["generation_progress"] = "generation_progress"
    stage: str
    percent: Union[int, float]
    current_file: Optional[str] = None


class StoreUpdate(OutboundMessage):
    type: Literal["store_update"] = "store_update"
    submission_id: str
    status: str
