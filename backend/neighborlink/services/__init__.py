# Services package init
"""
NeighborLink Backend — Services Layer
======================================

What:  Marketplace rules and the per-view state machines, between the routes
       and the store.
How:   Services take the acting user's id explicitly and return row schemas.
       The view-models (MessageFeed, UnreadCounter, ReviewablesWatcher,
       Inbox, ChatRoom) subscribe to the change feed and must be closed.

Service Inventory:
    - matcher.py:        ConversationMatcher (match handshake), MatchCelebration
    - message_feed.py:   MessageFeed (paged + live messages, read receipts)
    - review_gate.py:    ReviewGate, ReviewDialog, ReviewablesWatcher
    - unread.py:         UnreadCounter (badge count)
    - conversations.py:  ConversationService (start/open/list/send), Inbox
    - offers.py:         OfferService (post/browse/complete, offer reviews)
    - profiles.py:       ProfileService (edit, avatar, reviews, rating)
    - chat.py:           ChatRoom (everything one open chat needs)
"""
