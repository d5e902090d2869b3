from .embedding_reranker import EmbeddingReranker

__all__ = ["EmbeddingReranker"]
