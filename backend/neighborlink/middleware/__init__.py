# Middleware package init
"""
NeighborLink Backend — Middleware Package
==========================================

What:  Cross-cutting concerns applied to every HTTP request.

Middleware Chain:
    Request → [Request ID] → [Access Log] → [GZip] → [CORS] → Route Handler

    The request id is set first so the access log line and every log entry
    written while handling the request share it. WebSocket traffic bypasses
    both (BaseHTTPMiddleware only wraps HTTP).
"""
