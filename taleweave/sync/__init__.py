"""Live-feed cache and optimistic persistence."""

from .layer import PUBLIC_COLLECTION, SyncLayer, collection_for, private_collection

__all__ = ["PUBLIC_COLLECTION", "SyncLayer", "collection_for", "private_collection"]
