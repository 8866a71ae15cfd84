# app/api/realtime.py
"""
Realtime relay routes - the WebSocket endpoint plus read-only counters.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, WebSocket

from app.api.deps import require_admin, require_user
from app.lib.identity import UserIdentity

router = APIRouter(tags=["Realtime"])


async def realtime_endpoint(websocket: WebSocket, token: Optional[str] = Query(None)):
    """
    Relay socket. `?token=` admits immediately; otherwise the client is sent
    `auth_required` and may authenticate in-channel.
    """
    await websocket.app.state.relay.handle(websocket, token)


@router.get("/api/v1/realtime/me")
async def my_connections(request: Request, user: UserIdentity = Depends(require_user)):
    """How many live sessions the caller has."""
    relay = request.app.state.relay
    return {"userId": user.id, "connections": relay.count_for(user.id)}


@router.get("/api/v1/realtime/stats")
async def relay_stats(request: Request, user: UserIdentity = Depends(require_admin)):
    """Process-wide relay counters (admin only)."""
    relay = request.app.state.relay
    return {
        "users": len(relay.registry.user_ids()),
        "connections": relay.count_total(),
        "sockets": relay.count_sockets(),
    }
