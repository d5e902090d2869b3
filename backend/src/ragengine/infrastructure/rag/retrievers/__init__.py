from .retriever_keyword import KeywordHit, KeywordRetriever, scan_documents
from .retriever_vector import VectorRetriever

__all__ = ["KeywordHit", "KeywordRetriever", "scan_documents", "VectorRetriever"]
