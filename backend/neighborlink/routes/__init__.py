# Routes package init
"""
NeighborLink Backend — API Routes Package
==========================================

Route Inventory:
    - health.py:        GET  /health
    - offers.py:        GET/POST /api/offers, GET /api/offers/{id},
                        POST /api/offers/{id}/complete,
                        POST /api/offers/{id}/conversation,
                        GET  /api/offers/{id}/reviews
    - conversations.py: GET  /api/conversations, GET /api/conversations/{id},
                        GET/POST /api/conversations/{id}/messages,
                        POST /api/conversations/{id}/match,
                        WS   /ws/conversations/{id}
    - reviews.py:       POST /api/reviews, GET /api/reviews/reviewable
    - profiles.py:      GET/PATCH /api/profiles/{id}, POST /api/profiles/me/avatar,
                        GET /api/profiles/{id}/reviews, GET /api/profiles/{id}/rating
    - notifications.py: GET  /api/notifications/unread, WS /ws/notifications
    - storage.py:       GET  /storage/{bucket}/{path}

Routes stay thin: they resolve the Session, call one service, and let the
global exception handlers turn NeighborLinkError into JSON errors.
"""
