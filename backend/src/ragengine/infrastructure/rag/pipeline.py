#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
RAG Pipeline - 混合检索统一管线

写入：文本 → 分块 → 向量库 upsert
检索：查询 → {向量检索, 关键词检索} → RRF 合并 → 向量余弦复排 → 候选列表
迭代：{检索 → 生成} × steps，生成结果作为下一轮查询

统一对外接口：upsert / upsert_with_chunks / delete / retrieve / hybrid_retrieve / iterative_retrieve
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .chunker import DocumentChunk, SemanticChunker
from .context import RetrievalContext
from .embedder import Embedder
from .errors import (
    ConfigurationMissing,
    GenerationFailure,
    RAGException,
    RetrievalResult,
    StoreUnavailable,
)
from .merger import EvidenceMerger, RankedCandidate
from .prompt_builder import build_context
from .rerankers.embedding_reranker import EmbeddingReranker
from .retrievers.retriever_keyword import KEYWORD_DISTANCE, KeywordHit, KeywordRetriever
from .retrievers.retriever_vector import VectorRetriever
from .vectorstores.base import StoredDocument, VectorHit, VectorStoreAdapter, sanitize_metadata
from ..llm.generator import GenerateFn, passthrough_generate

logger = logging.getLogger(__name__)

DocumentInput = Union[StoredDocument, Mapping[str, Any]]


@dataclass
class RAGConfig:
    """RAG配置"""
    # 分块配置
    chunk_max_size: int = 1200
    chunk_min_size: int = 300

    # 检索配置
    n_results: int = 3
    hybrid_n_results: int = 5
    vector_overfetch: int = 2
    type_overfetch: int = 10
    keyword_enabled: bool = True
    keyword_distance: float = KEYWORD_DISTANCE

    # 复排配置
    rerank_concurrency: int = 8

    # 迭代检索配置
    iterative_steps: int = 2
    iterative_n_results: int = 3


@dataclass
class ChunkOptions:
    """分块写入选项"""
    max_size: Optional[int] = None
    min_size: Optional[int] = None
    use_embedding_chunking: bool = False


@dataclass
class HybridQuery:
    """混合检索请求"""
    query: str
    n_results: int = 5
    filters: Optional[Dict[str, Any]] = None


@dataclass
class IterativeQuery:
    """迭代检索请求"""
    query: str
    steps: int = 2
    n_results: int = 3


@dataclass
class IterationStep:
    """单轮迭代记录"""
    step: int
    query: str
    context: str
    candidate_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None


class RAGPipeline:
    """RAG系统主管线（所有协作者通过构造函数注入）"""

    def __init__(self, store: Optional[VectorStoreAdapter], embedder: Optional[Embedder],
                 generate: Optional[GenerateFn] = None, config: Optional[RAGConfig] = None):
        """
        初始化RAG管线

        Args:
            store: 向量库适配器
            embedder: 嵌入器（分块与复排使用）
            generate: 迭代检索使用的生成函数（默认直通）
            config: RAG配置
        """
        if store is None:
            raise ConfigurationMissing("未配置向量库适配器")
        if embedder is None:
            raise ConfigurationMissing("未配置嵌入函数")

        self.config = config or RAGConfig()
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.embedder = embedder
        self.generate = generate or passthrough_generate

        self.chunker = SemanticChunker(
            max_size=self.config.chunk_max_size,
            min_size=self.config.chunk_min_size,
            embedder=embedder,
        )
        self.vector_retriever = VectorRetriever(store)
        self.keyword_retriever = KeywordRetriever(store, placeholder_distance=self.config.keyword_distance)
        self.evidence_merger = EvidenceMerger()
        self.reranker = EmbeddingReranker(embedder, max_concurrency=self.config.rerank_concurrency)
        self._last_merge_stats: Dict[str, Any] = {}

        self.logger.info("RAG管线组件初始化完成")

    # ------------------------------------------------------------------
    # 写入
    # ------------------------------------------------------------------

    async def upsert(self, documents: Sequence[DocumentInput]) -> int:
        """
        写入文档（同id幂等覆盖）

        Raises:
            ValueError: 文档缺少id或content
            StoreUnavailable / EmbeddingFailure: 向量库写入失败
        """
        normalized = self._normalize_documents(documents)
        if not normalized:
            return 0
        count = await self.store.upsert(normalized)
        self.logger.info(f"Upserted {count} documents")
        return count

    async def upsert_with_chunks(self, document: DocumentInput,
                                 options: Optional[ChunkOptions] = None) -> List[DocumentChunk]:
        """
        分块后写入：每个分块作为独立文档，id 为 <parentId>::chunk<N>

        重新分块时删除该父文档不再属于新分块集合的旧分块

        Returns:
            List[DocumentChunk]: 写入的分块
        """
        options = options or ChunkOptions()
        parent = self._normalize_documents([document])[0]

        pieces = await self.chunk_text(parent.content, options)
        chunks = self.chunker.build_chunks(parent.id, pieces, parent.metadata)
        if chunks:
            await self.store.upsert([c.to_document() for c in chunks])

        current_ids = {c.chunk_id for c in chunks}
        stale = [
            doc.id for doc in await self.store.list_all()
            if doc.metadata.get("parentId") == parent.id
            and doc.id != parent.id and doc.id not in current_ids
        ]
        if stale:
            await self.store.delete(stale)
            self.logger.info(f"Removed {len(stale)} stale chunks for document {parent.id}")
        self.logger.info(f"Upserted {len(chunks)} semantic chunks for document {parent.id}")
        return chunks

    async def chunk_text(self, text: str, options: Optional[ChunkOptions] = None) -> List[str]:
        """分块（段落模式或嵌入模式）"""
        options = options or ChunkOptions()
        if options.use_embedding_chunking:
            return await self.chunker.chunk_async(text, options.max_size, options.min_size)
        return self.chunker.chunk(text, options.max_size, options.min_size)

    async def upsert_file(self, file_path: Union[str, Path], doc_id: Optional[str] = None,
                          metadata: Optional[Dict[str, Any]] = None) -> StoredDocument:
        """读取文本文件并作为单个文档写入（id 默认为文件路径）"""
        path = Path(file_path)
        content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        document = StoredDocument(
            id=doc_id or str(path),
            content=content,
            metadata=sanitize_metadata({**(metadata or {}), "filePath": str(path)}),
        )
        await self.upsert([document])
        self.logger.info(f"Upserted file {path} as document {document.id}")
        return document

    async def upsert_context(self, context_obj: Mapping[str, Any], doc_id: Optional[str] = None,
                             metadata: Optional[Dict[str, Any]] = None) -> StoredDocument:
        """把任意上下文对象序列化为 JSON 文档写入，便于语义检索"""
        meta = dict(metadata or {})
        meta.setdefault("type", "generic-context")
        document = StoredDocument(
            id=doc_id or f"context-{int(time.time() * 1000)}",
            content=json.dumps(context_obj, indent=2, ensure_ascii=False, default=str),
            metadata=sanitize_metadata(meta),
        )
        await self.upsert([document])
        self.logger.info(f"Upserted context as document {document.id}")
        return document

    async def delete(self, doc_id: str) -> None:
        """按id删除单个文档（不级联删除分块）"""
        await self.store.delete([doc_id])
        self.logger.info(f"Deleted document {doc_id}")

    async def delete_with_chunks(self, parent_id: str) -> int:
        """删除父文档及所有 parentId 指向它的分块"""
        documents = await self.store.list_all()
        ids = [parent_id] + [
            doc.id for doc in documents
            if doc.metadata.get("parentId") == parent_id and doc.id != parent_id
        ]
        await self.store.delete(ids)
        self.logger.info(f"Deleted document {parent_id} with {len(ids) - 1} chunks")
        return len(ids)

    async def list_documents(self) -> List[StoredDocument]:
        return await self.store.list_all()

    # ------------------------------------------------------------------
    # 检索
    # ------------------------------------------------------------------

    async def retrieve_result(self, query: str, n_results: Optional[int] = None,
                              context: Optional[RetrievalContext] = None) -> RetrievalResult:
        """单次向量检索（结构化结果）"""
        if n_results is None:
            n_results = self.config.n_results
        try:
            hits = await self.vector_retriever.search(query, top_k=n_results)
        except RAGException as e:
            self.logger.error(f"Error retrieving documents: {e}")
            self._record(context, "vector", query, "error", e.message)
            return RetrievalResult.from_exception(e)

        candidates = self._vector_candidates(hits)
        self._finish(context, "vector", query, candidates)
        return RetrievalResult.success(candidates)

    async def retrieve(self, query: str, n_results: Optional[int] = None,
                       context: Optional[RetrievalContext] = None) -> str:
        """单次向量检索，渲染为可读字符串（失败时返回描述性提示，不抛出）"""
        result = await self.retrieve_result(query, n_results, context)
        return result.render()

    async def retrieve_by_type(self, doc_type: str, query: str,
                               n_results: Optional[int] = None) -> List[RankedCandidate]:
        """向量检索后只保留 metadata.type 匹配的文档"""
        if n_results is None:
            n_results = self.config.n_results
        result = await self.retrieve_result(query, self.config.type_overfetch)
        return [c for c in result.candidates if c.metadata.get("type") == doc_type][:n_results]

    async def hybrid_retrieve_result(self, request: HybridQuery,
                                     context: Optional[RetrievalContext] = None) -> RetrievalResult:
        """
        混合检索：向量 + 关键词 → RRF → 过滤 → 复排

        单一来源失败时降级为空列表并记录；两个来源都失败时返回错误结果
        """
        query = request.query
        vector_hits, keyword_hits, errors = await self._gather_sources(query, request.n_results)

        for source, error in errors:
            self._record(context, source, query, "error", error.message)

        expected_sources = 2 if self.config.keyword_enabled else 1
        if len(errors) == expected_sources:
            first_error = errors[0][1]
            self._record(context, "hybrid", query, "error", first_error.message)
            return RetrievalResult.from_exception(first_error)

        fused = self.evidence_merger.merge(vector_hits, keyword_hits, filters=request.filters)
        self._last_merge_stats = self.evidence_merger.get_merge_statistics(fused)
        ranked = await self.reranker.rerank(query, fused, top_k=request.n_results)

        self._finish(context, "hybrid", query, ranked)
        return RetrievalResult.success(ranked)

    async def hybrid_retrieve(self, query: str, n_results: Optional[int] = None,
                              filters: Optional[Dict[str, Any]] = None,
                              context: Optional[RetrievalContext] = None) -> List[RankedCandidate]:
        """混合检索，失败时返回空列表"""
        if n_results is None:
            n_results = self.config.hybrid_n_results
        request = HybridQuery(query=query, n_results=n_results, filters=filters)
        result = await self.hybrid_retrieve_result(request, context)
        if not result.ok:
            self.logger.warning(f"混合检索失败，返回空结果: {result.message}")
        return result.candidates

    async def iterative_retrieve(self, query: str, steps: Optional[int] = None,
                                 generate: Optional[GenerateFn] = None,
                                 n_results: Optional[int] = None,
                                 context: Optional[RetrievalContext] = None) -> List[str]:
        """
        迭代检索-生成循环，返回每轮的上下文字符串（长度恰为 steps）
        """
        request = IterativeQuery(
            query=query,
            steps=self.config.iterative_steps if steps is None else steps,
            n_results=self.config.iterative_n_results if n_results is None else n_results,
        )
        history = await self.iterate(request, generate=generate, context=context)
        return [step.context for step in history]

    async def iterate(self, request: IterativeQuery, generate: Optional[GenerateFn] = None,
                      context: Optional[RetrievalContext] = None) -> List[IterationStep]:
        """迭代检索的详细版本：返回每轮的查询、上下文和命中id"""
        generate = generate or self.generate
        current_query = request.query
        history: List[IterationStep] = []
        seen: Dict[str, Tuple[str, List[str]]] = {}

        for step in range(1, request.steps + 1):
            if current_query in seen:
                # 相同查询直接复用上一轮结果
                context_text, candidate_ids = seen[current_query]
            else:
                result = await self.hybrid_retrieve_result(
                    HybridQuery(query=current_query, n_results=request.n_results), context
                )
                context_text = build_context(result.candidates)
                candidate_ids = [c.id for c in result.candidates]
                seen[current_query] = (context_text, candidate_ids)

            record = IterationStep(step=step, query=current_query, context=context_text,
                                   candidate_ids=candidate_ids)
            history.append(record)

            try:
                next_query = await generate(current_query, context_text)
                if not isinstance(next_query, str) or not next_query.strip():
                    raise GenerationFailure("generation returned empty text")
                current_query = next_query
            except Exception as e:
                # 生成失败时沿用当前查询
                record.error = str(e)
                self.logger.error(f"第 {step} 轮生成失败，沿用当前查询: {e}")
                self._record(context, "generation", current_query, "error", str(e))

        self._record(context, "iterative", request.query, "ok", f"steps={len(history)}")
        self.logger.info(f"迭代检索完成: steps={len(history)}")
        return history

    # ------------------------------------------------------------------
    # 状态
    # ------------------------------------------------------------------

    async def status(self) -> Dict[str, Any]:
        """获取管线状态"""
        try:
            store_health = await self.store.health_check()
        except Exception as e:
            self.logger.error(f"向量库健康检查失败: {e}")
            store_health = False
        return {
            "config": {
                "n_results": self.config.n_results,
                "hybrid_n_results": self.config.hybrid_n_results,
                "vector_overfetch": self.config.vector_overfetch,
                "keyword_enabled": self.config.keyword_enabled,
                "iterative_steps": self.config.iterative_steps,
            },
            "components": {
                "store_health": store_health,
                "embed_model": self.embedder.model_name,
            },
            "statistics": {
                "vector_stats": self.vector_retriever.get_statistics(),
                "last_merge": dict(self._last_merge_stats),
            },
        }

    async def close(self) -> None:
        await self.store.close()

    # ------------------------------------------------------------------
    # 内部
    # ------------------------------------------------------------------

    async def _gather_sources(self, query: str, n_results: int
                              ) -> Tuple[List[VectorHit], List[KeywordHit], List[Tuple[str, RAGException]]]:
        tasks = [self.vector_retriever.search(query, top_k=n_results * self.config.vector_overfetch)]
        if self.config.keyword_enabled:
            tasks.append(self.keyword_retriever.search(query))

        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        vector_hits: List[VectorHit] = []
        keyword_hits: List[KeywordHit] = []
        errors: List[Tuple[str, RAGException]] = []
        for source, outcome in zip(("vector", "keyword"), outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                error = outcome if isinstance(outcome, RAGException) else StoreUnavailable(str(outcome), outcome)
                self.logger.error(f"{source}检索失败，按空结果处理: {error.message}")
                errors.append((source, error))
            elif source == "vector":
                vector_hits = outcome
            else:
                keyword_hits = outcome
        return vector_hits, keyword_hits, errors

    def _vector_candidates(self, hits: List[VectorHit]) -> List[RankedCandidate]:
        return [
            RankedCandidate(
                id=hit.id,
                content=hit.content,
                metadata=dict(hit.metadata),
                distance=hit.distance,
                rrf=1.0 / rank,
                vector_rank=rank,
                sources=["vector"],
            )
            for rank, hit in enumerate(hits, start=1)
        ]

    def _finish(self, context: Optional[RetrievalContext], kind: str, query: str,
                candidates: List[RankedCandidate]) -> None:
        if context is None:
            return
        if candidates:
            context.add_references(candidates)
            context.record(kind, query, "ok", f"results={len(candidates)}")
        else:
            context.record(kind, query, "empty")

    def _record(self, context: Optional[RetrievalContext], kind: str, query: str,
                status: str, detail: Optional[str] = None) -> None:
        if context is not None:
            context.record(kind, query, status, detail)

    def _normalize_documents(self, documents: Sequence[DocumentInput]) -> List[StoredDocument]:
        normalized: Dict[str, StoredDocument] = {}
        for doc in documents:
            if isinstance(doc, StoredDocument):
                doc_id, content, meta = doc.id, doc.content, doc.metadata
            else:
                doc_id, content, meta = doc.get("id"), doc.get("content"), doc.get("metadata")
            if not doc_id:
                raise ValueError("文档缺少id")
            if content is None:
                raise ValueError(f"文档缺少content: {doc_id}")
            # 同批次重复id以最后一个为准
            normalized[str(doc_id)] = StoredDocument(
                id=str(doc_id), content=str(content), metadata=sanitize_metadata(meta)
            )
        return list(normalized.values())
