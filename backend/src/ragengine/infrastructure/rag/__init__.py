#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
RAG (Retrieval-Augmented Generation) 混合检索引擎

- 向量检索（语义召回）+ 关键词子串检索（精确词命中）
- RRF 合并 → 向量余弦复排 → 上下文渲染
- 迭代检索-生成循环（多跳）
"""

from .pipeline import RAGPipeline, RAGConfig, ChunkOptions, HybridQuery, IterativeQuery, IterationStep
from .chunker import SemanticChunker, DocumentChunk
from .context import RetrievalContext, ProvenanceEntry, Reference
from .embedder import Embedder, EmbeddingResult, OpenAICompatibleEmbeddingFunction, cosine_similarity
from .errors import (
    RAGException,
    StoreUnavailable,
    EmbeddingFailure,
    ConfigurationMissing,
    GenerationFailure,
    ErrorKind,
    RetrievalResult,
)
from .merger import EvidenceMerger, RankedCandidate
from .prompt_builder import NO_RESULTS_MESSAGE, format_documents
from .vectorstores.base import StoredDocument, VectorHit, VectorStoreAdapter, sanitize_metadata

__all__ = [
    "RAGPipeline",
    "RAGConfig",
    "ChunkOptions",
    "HybridQuery",
    "IterativeQuery",
    "IterationStep",
    "SemanticChunker",
    "DocumentChunk",
    "RetrievalContext",
    "ProvenanceEntry",
    "Reference",
    "Embedder",
    "EmbeddingResult",
    "OpenAICompatibleEmbeddingFunction",
    "cosine_similarity",
    "RAGException",
    "StoreUnavailable",
    "EmbeddingFailure",
    "ConfigurationMissing",
    "GenerationFailure",
    "ErrorKind",
    "RetrievalResult",
    "EvidenceMerger",
    "RankedCandidate",
    "NO_RESULTS_MESSAGE",
    "format_documents",
    "StoredDocument",
    "VectorHit",
    "VectorStoreAdapter",
    "sanitize_metadata",
]
