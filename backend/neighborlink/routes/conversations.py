"""
NeighborLink Backend — Conversation Route Handlers
===================================================

What:  Inbox, chat context, message paging/sending, the match toggle, and
       the live chat WebSocket.
How:   HTTP routes are stateless and authorize on every call. The WebSocket
       holds one ChatRoom for its lifetime and relays the room's events.

WebSocket protocol (/ws/conversations/{id}?user_id=...):
    client → {"action": "send", "content": str}
             {"action": "load_more"}
             {"action": "scroll", "scroll_height": n, "scroll_top": n, "client_height": n}
             {"action": "match"}
             {"action": "review", "rating": int, "comment": str | null}
    server → {"type": "context" | "page" | "older" | "message" | "conversation"
                      | "offer" | "match" | "notice" | "error", "data": {...}}

    Close codes: 4001 not signed in, 4403 not a participant, 4404 not found,
                 1011 the room could not be opened.
    Frames that are not a JSON object get an "error" frame; the socket stays open.
"""

import json
import logging
import uuid
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from neighborlink.exceptions import (
    AuthorizationError,
    NeighborLinkError,
    NotAuthenticatedError,
    NotFoundError,
)
from neighborlink.realtime.feed import change_feed
from neighborlink.routes.deps import get_session, websocket_session
from neighborlink.schemas.api import (
    ChatContext,
    ConversationSummary,
    ErrorResponse,
    MatchResponse,
    MessageCreate,
    MessagePage,
)
from neighborlink.schemas.rows import MessageRow
from neighborlink.services.chat import ChatRoom
from neighborlink.services.conversations import conversation_service
from neighborlink.services.matcher import MatchResult, conversation_matcher
from neighborlink.services.message_feed import MessageFeed
from neighborlink.session import Session
from neighborlink.store.relational import store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/conversations", tags=["Conversations"])
ws_router = APIRouter(tags=["Realtime"])


def match_response(result: MatchResult) -> MatchResponse:
    return MatchResponse(
        conversation=result.conversation,
        outcome=result.outcome.value,
        notice=result.outcome.notice,
        offer_delisted=result.offer_delisted,
        offer_error=result.offer_error,
    )


# ══════════════════════════════════════════════════════════════════════════
# HTTP
# ══════════════════════════════════════════════════════════════════════════


@router.get("", response_model=List[ConversationSummary], summary="Inbox, newest activity first")
async def list_conversations(session: Session = Depends(get_session)) -> List[ConversationSummary]:
    return await conversation_service.list_conversations(session.user_id)


@router.get(
    "/{conversation_id}",
    response_model=ChatContext,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def open_conversation(
    conversation_id: uuid.UUID, session: Session = Depends(get_session)
) -> ChatContext:
    return await conversation_service.open_conversation(conversation_id, session.user_id)


@router.get(
    "/{conversation_id}/messages",
    response_model=MessagePage,
    responses={403: {"model": ErrorResponse}},
    summary="One page of messages, oldest first; inbound messages are marked read",
)
async def list_messages(
    conversation_id: uuid.UUID,
    offset: int = Query(default=0, ge=0, description="Messages to skip, counted from the newest"),
    session: Session = Depends(get_session),
) -> MessagePage:
    conversation = await conversation_service.authorize(conversation_id, session.user_id)
    feed = MessageFeed(store, change_feed, conversation, session.user_id)
    return await feed.load(offset)


@router.post(
    "/{conversation_id}/messages",
    status_code=201,
    response_model=MessageRow,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def send_message(
    conversation_id: uuid.UUID,
    body: MessageCreate,
    session: Session = Depends(get_session),
) -> MessageRow:
    conversation = await conversation_service.authorize(conversation_id, session.user_id)
    return await conversation_service.send_message(conversation, session.user_id, body.content)


@router.post(
    "/{conversation_id}/match",
    response_model=MatchResponse,
    responses={403: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    summary="Toggle the caller's match on this conversation",
)
async def toggle_match(
    conversation_id: uuid.UUID, session: Session = Depends(get_session)
) -> MatchResponse:
    conversation = await conversation_service.authorize(conversation_id, session.user_id)
    result = await conversation_matcher.toggle_match(conversation, session.user_id)
    return match_response(result)


# ══════════════════════════════════════════════════════════════════════════
# WebSocket
# ══════════════════════════════════════════════════════════════════════════


async def _handle_action(room: ChatRoom, websocket: WebSocket, data: Dict[str, Any]) -> None:
    action = data.get("action")
    if action == "send":
        await room.send(str(data.get("content", "")))
    elif action == "load_more":
        older = await room.load_more()
        await websocket.send_json({
            "type": "older",
            "data": {
                "messages": [m.model_dump(mode="json") for m in older],
                "has_more": room.messages.has_more,
            },
        })
    elif action == "scroll":
        room.on_scroll(
            float(data["scroll_height"]), float(data["scroll_top"]), float(data["client_height"])
        )
    elif action == "match":
        result = await room.toggle_match()
        await websocket.send_json({"type": "match", "data": match_response(result).model_dump(mode="json")})
    elif action == "review":
        await room.submit_review(int(data.get("rating", 0)), data.get("comment"))
    else:
        await websocket.send_json({
            "type": "error",
            "data": {"message": f"Unknown action: {action!r}"},
        })


@ws_router.websocket("/ws/conversations/{conversation_id}")
async def chat_socket(websocket: WebSocket, conversation_id: uuid.UUID):
    await websocket.accept()
    try:
        session = websocket_session(websocket)
    except NotAuthenticatedError as e:
        await websocket.close(code=4001, reason=e.message)
        return

    async def relay(kind: str, payload: Dict[str, Any]) -> None:
        await websocket.send_json({"type": kind, "data": payload})

    room = ChatRoom(session.user_id, conversation_id, on_event=relay)
    try:
        try:
            context = await room.open()
        except AuthorizationError as e:
            await websocket.close(code=4403, reason=e.message)
            return
        except NotFoundError as e:
            await websocket.close(code=4404, reason=e.message)
            return
        except NeighborLinkError as e:
            logger.error("Chat room %s failed to open: %s", conversation_id, e.message)
            await websocket.close(code=1011, reason=e.message)
            return

        await relay("context", context.model_dump(mode="json"))
        await relay("page", room.page().model_dump(mode="json"))

        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
                if not isinstance(data, dict):
                    raise TypeError("expected a JSON object")
                await _handle_action(room, websocket, data)
            except NeighborLinkError as e:
                # Non-blocking: the room stays usable and its state unchanged.
                await room.notify("error", e.message)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                await relay("error", {"message": f"Invalid message format: {e}"})
    except WebSocketDisconnect:
        logger.debug("Chat socket closed for %s", conversation_id)
    finally:
        await room.close()
