"""
NeighborLink Backend — Application Package Initializer
======================================================

What: A local skills-bartering marketplace: offers, two-party conversations
      with a mutual "match" handshake, paginated live message feeds,
      post-completion reviews and an unread-message counter.

Architecture Note:

    ┌─────────────────────────────────────┐
    │      Routes (HTTP + WebSocket)      │  ← thin, deliver notices
    ├─────────────────────────────────────┤
    │   Services (view-models, per user)  │  ← matcher, feed, gate, counter
    ├─────────────────────────────────────┤
    │  Store · Change Feed · Blob Storage │  ← backend collaborators
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    └─────────────────────────────────────┘

    View-models never hold authoritative state: they keep transient copies
    of store rows and re-derive them from the change feed.
"""

__version__ = "1.0.0"
