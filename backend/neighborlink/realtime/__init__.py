# Realtime package init
"""
NeighborLink Backend — Realtime
================================

What:  The in-process change feed (feed.py) that the store publishes to
       and view-models subscribe to.
"""
