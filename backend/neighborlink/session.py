"""
NeighborLink Backend — Session Handle
======================================

What:  The signed-in user's identity, passed explicitly to every service.
How:   Routes build a Session from the `X-User-Id` header (credential
       management lives outside this service). Per-user resources such as
       the unread counter register sign-out hooks so they are torn down
       with the session.
"""

import logging
import uuid
from typing import Awaitable, Callable, List, Optional, Union

from neighborlink.exceptions import NotAuthenticatedError

logger = logging.getLogger(__name__)

SignOutHook = Callable[[], Union[None, Awaitable[None]]]


class Session:
    """Identity of the acting user for the lifetime of one sign-in."""

    def __init__(self, user_id: Optional[uuid.UUID]):
        self._user_id = user_id
        self._on_sign_out: List[SignOutHook] = []

    @classmethod
    def from_header(cls, value: Optional[str]) -> "Session":
        """Parse an `X-User-Id` header value; missing or malformed → NotAuthenticatedError."""
        if not value:
            raise NotAuthenticatedError()
        try:
            return cls(uuid.UUID(value.strip()))
        except ValueError:
            raise NotAuthenticatedError(
                message="Invalid user id",
                context={"header": "X-User-Id"},
            )

    @property
    def is_signed_in(self) -> bool:
        return self._user_id is not None

    @property
    def user_id(self) -> uuid.UUID:
        """The acting user's id. Raises NotAuthenticatedError once signed out."""
        if self._user_id is None:
            raise NotAuthenticatedError()
        return self._user_id

    def on_sign_out(self, hook: SignOutHook) -> None:
        self._on_sign_out.append(hook)

    async def sign_out(self) -> None:
        """Run sign-out hooks (newest first) and forget the user."""
        hooks, self._on_sign_out = self._on_sign_out, []
        for hook in reversed(hooks):
            result = hook()
            if result is not None:
                await result
        logger.info("User %s signed out", self._user_id)
        self._user_id = None

    def __repr__(self) -> str:
        return f"<Session(user_id={self._user_id})>"
