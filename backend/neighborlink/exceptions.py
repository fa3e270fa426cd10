"""
NeighborLink Backend — Custom Exception Hierarchy
==================================================

What:  Application-specific exceptions for each failure class of the marketplace.
How:   Each exception carries a user-facing message and an optional context dict.
       Global exception handlers (registered in main.py) map them to HTTP
       status codes; view-models raise them and callers decide how to notify.

Exception Hierarchy:
    NeighborLinkError (base)
    ├── ValidationError          → 400 (caught before any request is issued)
    ├── NotAuthenticatedError    → 401
    ├── AuthorizationError       → 403 (viewer is not a participant / owner)
    ├── NotFoundError            → 404
    ├── ConflictError            → 409 (unique-constraint violation)
    │   └── DuplicateReviewError → 409 ("already reviewed")
    ├── DatabaseError            → 503 (transient store failure)
    │   └── MatchUpdateError     → 503 ("failed to update match status")
    └── FileStorageError         → 500
"""

from typing import Any, Dict, Optional


class NeighborLinkError(Exception):
    """
    Base exception for all NeighborLink application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(NeighborLinkError):
    """
    Raised when user input fails validation.

    When:    Zero-star rating, over-long comment, empty message, bad image type.
    Note:    Always raised before any persistence call is made.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotAuthenticatedError(NeighborLinkError):
    """Raised when an operation needs a signed-in user and there is none."""

    def __init__(
        self,
        message: str = "You must be signed in to do that",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class AuthorizationError(NeighborLinkError):
    """
    Raised when the signed-in user may not act on a resource.

    When:    Opening a conversation the viewer is not part of, completing
             or editing somebody else's offer or profile.
    """

    def __init__(
        self,
        message: str = "You are not authorized to do that",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(NeighborLinkError):
    """
    Raised when a requested row does not exist.

    SQLAlchemy returns None for missing records; the store converts that
    None into NotFoundError.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class ConflictError(NeighborLinkError):
    """
    Raised when a write violates a unique constraint in the store.

    Callers recover by re-reading the conflicting row where the semantics
    allow it (conversation creation) or surface a specific message where
    they don't (review submission).
    """

    def __init__(
        self,
        message: str = "This record already exists",
        constraint: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if constraint:
            ctx["constraint"] = constraint
        super().__init__(message=message, context=ctx)
        self.constraint = constraint


class DuplicateReviewError(ConflictError):
    """Raised when the viewer already reviewed this user for this offer."""

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            message="You have already reviewed this user for this service",
            constraint="uq_reviews_offer_reviewer_reviewee",
            context=context,
        )


class DatabaseError(NeighborLinkError):
    """
    Raised when a store operation fails for a transient reason.

    The message returned to the client is always generic; SQL details are
    logged server-side only. Local view-model state is left unchanged and
    the operation is not retried automatically.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class MatchUpdateError(DatabaseError):
    """Raised when persisting a match toggle fails; nothing was changed locally."""

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(message="Failed to update match status", context=context)


class FileStorageError(NeighborLinkError):
    """
    Raised when blob storage operations fail.

    When:    Disk full, permission denied, object already exists without
             overwrite, path escaping its bucket.
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
