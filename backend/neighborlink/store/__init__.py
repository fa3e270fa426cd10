# Store package init
"""
NeighborLink Backend — Backend Collaborators
=============================================

What:  Data access the view-models depend on.

Inventory:
    - relational.py: Store (profiles, offers, conversations, messages,
                     reviews) and the two aggregate functions
    - blob.py:       BlobStorage buckets for avatars and offer images
"""
