"""
NeighborLink Backend — Notification Route Handlers
===================================================

What:  The unread-message badge, once over HTTP and live over a WebSocket.
How:   The socket owns one UnreadCounter bound to a Session; closing the
       socket signs the session out, which releases the counter's
       subscription and resets it to zero.

WebSocket protocol (/ws/notifications?user_id=...):
    server → {"type": "unread", "data": {"unread_count": n}} on connect and
             on every change
    client → any text frame triggers an explicit refresh
"""

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from neighborlink.exceptions import NotAuthenticatedError
from neighborlink.routes.deps import get_session, websocket_session
from neighborlink.schemas.api import UnreadCountResponse
from neighborlink.services.unread import UnreadCounter
from neighborlink.session import Session
from neighborlink.store.relational import store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])
ws_router = APIRouter(tags=["Realtime"])


@router.get("/unread", response_model=UnreadCountResponse)
async def unread_count(session: Session = Depends(get_session)) -> UnreadCountResponse:
    return UnreadCountResponse(unread_count=await store.unread_message_count(session.user_id))


@ws_router.websocket("/ws/notifications")
async def notifications_socket(websocket: WebSocket):
    await websocket.accept()
    try:
        session = websocket_session(websocket)
    except NotAuthenticatedError as e:
        await websocket.close(code=4001, reason=e.message)
        return

    async def push(count: int) -> None:
        await websocket.send_json({"type": "unread", "data": {"unread_count": count}})

    counter = UnreadCounter()
    session.on_sign_out(counter.sign_out)
    try:
        await counter.sign_in(session.user_id)
        await push(counter.count)
        counter.add_listener(push)
        while True:
            await websocket.receive_text()
            await push(await counter.refresh())
    except WebSocketDisconnect:
        logger.debug("Notification socket closed for %s", session)
    finally:
        counter.remove_listener(push)
        await session.sign_out()
