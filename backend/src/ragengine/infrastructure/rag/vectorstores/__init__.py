from .base import StoredDocument, VectorHit, VectorStoreAdapter, sanitize_metadata

__all__ = ["StoredDocument", "VectorHit", "VectorStoreAdapter", "sanitize_metadata"]
