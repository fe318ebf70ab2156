"""WebSocket endpoint for access-block pushes."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect

from app.api.deps import decode_access_token, ensure_partner_access
from app.services.billing.access import push_access_status
from app.services.websocket_manager import ws_manager

logger = logging.getLogger(__name__)

router = APIRouter()


def _token_from_subprotocol(websocket: WebSocket) -> str:
    """Return the first WebSocket subprotocol value as bearer token."""
    offered = websocket.scope.get("subprotocols")
    if not isinstance(offered, list):
        return ""
    for value in offered:
        if isinstance(value, str) and value:
            return value
    return ""


def _authorize_ws(token: str, partner_id: UUID) -> bool:
    if not token:
        return False
    try:
        ensure_partner_access(decode_access_token(token), partner_id)
    except HTTPException:
        return False
    return True


@router.websocket("/ws/partners/{partner_id}/access-block")
async def ws_access_block(websocket: WebSocket, partner_id: UUID) -> None:
    """Push the partner's access-block status whenever its invoices change.

    Authenticate via Sec-WebSocket-Protocol subprotocol value. The current
    status is sent on connect; ``refresh`` recomputes it on demand.
    """
    token = _token_from_subprotocol(websocket)
    if not _authorize_ws(token, partner_id):
        await websocket.close(code=4001, reason="Unauthorized")
        return

    await ws_manager.connect(partner_id, websocket, subprotocol=token)
    try:
        await push_access_status(partner_id)
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
            elif data == "refresh":
                await push_access_status(partner_id)
    except WebSocketDisconnect:
        ws_manager.disconnect(partner_id, websocket)
    except Exception:
        logger.exception("WebSocket error: partner=%s", partner_id)
        ws_manager.disconnect(partner_id, websocket)
