"""
NeighborLink Backend — Route Dependencies
==========================================

What:  Resolves the acting user's Session for HTTP and WebSocket routes.
How:   HTTP reads the `X-User-Id` header. Browsers cannot set headers on a
       WebSocket handshake, so sockets also accept a `user_id` query
       parameter.
"""

from typing import Optional

from fastapi import Header, WebSocket

from neighborlink.session import Session


async def get_session(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> Session:
    """FastAPI dependency; raises NotAuthenticatedError (→ 401) when absent."""
    return Session.from_header(x_user_id)


def websocket_session(websocket: WebSocket) -> Session:
    value = websocket.headers.get("x-user-id") or websocket.query_params.get("user_id")
    return Session.from_header(value)
