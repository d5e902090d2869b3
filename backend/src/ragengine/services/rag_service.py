#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
RAG Service - RAG系统服务层

为应用的其他部分提供RAG功能的统一接口：
- 根据 Settings 构造并注入协作者（嵌入函数、向量库、生成函数）
- 检索入口永不抛出：未配置/不可用时返回兜底字符串或空列表
- 写入入口向上传播异常，由API层映射为HTTP状态码
"""

import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence

from ..core.settings import AppSettings, get_settings
from ..infrastructure.llm import OpenAICompatibleGenerator
from ..infrastructure.rag import (
    ChunkOptions,
    ConfigurationMissing,
    DocumentChunk,
    Embedder,
    ErrorKind,
    OpenAICompatibleEmbeddingFunction,
    RAGConfig,
    RAGPipeline,
    RankedCandidate,
    RetrievalContext,
    RetrievalResult,
    StoredDocument,
)
from ..infrastructure.rag.pipeline import DocumentInput
from ..infrastructure.rag.vectorstores.qdrant_store import QdrantStore

logger = logging.getLogger(__name__)


def create_rag_pipeline(settings: Optional[AppSettings] = None) -> RAGPipeline:
    """
    按配置构造RAG管线

    Raises:
        ConfigurationMissing: 未配置嵌入接口
    """
    settings = settings or get_settings()

    embedding = settings.embedding
    if not embedding.base_url or not embedding.model:
        raise ConfigurationMissing("未配置嵌入接口 (APP_EMBEDDING__BASE_URL / APP_EMBEDDING__MODEL)")
    embed_fn = OpenAICompatibleEmbeddingFunction(
        base_url=embedding.base_url,
        model=embedding.model,
        api_key=embedding.api_key,
        timeout=embedding.timeout,
    )
    embedder = Embedder(embed_fn, model_name=embedding.model)

    store = QdrantStore(
        embedder,
        url=settings.qdrant.url,
        api_key=settings.qdrant.api_key,
        collection_name=settings.qdrant.collection,
        distance=settings.qdrant.distance,
        location=settings.qdrant.location,
    )

    generate = None
    generation = settings.generation
    if generation.enabled:
        generate = OpenAICompatibleGenerator(
            base_url=generation.base_url,
            model=generation.model,
            api_key=generation.api_key,
            temperature=generation.temperature,
            max_tokens=generation.max_tokens,
            timeout=generation.timeout,
        )

    config = RAGConfig(**settings.rag.model_dump(exclude={"log_level"}))
    logger.info(f"RAG管线构造完成: collection={settings.qdrant.collection}, embed_model={embedding.model}")
    return RAGPipeline(store, embedder, generate=generate, config=config)


class RAGService:
    """RAG服务类"""

    def __init__(self, pipeline: Optional[RAGPipeline] = None, settings: Optional[AppSettings] = None):
        self.logger = logging.getLogger(__name__)
        self._pipeline = pipeline
        self._settings = settings

    @property
    def pipeline(self) -> RAGPipeline:
        """获取RAG管线实例（延迟初始化）"""
        if self._pipeline is None:
            self._pipeline = create_rag_pipeline(self._settings)
        return self._pipeline

    # ------------------------------------------------------------------
    # 写入（异常向上传播）
    # ------------------------------------------------------------------

    async def upsert(self, documents: Sequence[DocumentInput]) -> int:
        return await self.pipeline.upsert(documents)

    async def upsert_with_chunks(self, document: DocumentInput,
                                 options: Optional[ChunkOptions] = None) -> List[DocumentChunk]:
        return await self.pipeline.upsert_with_chunks(document, options)

    async def delete(self, doc_id: str, with_chunks: bool = False) -> int:
        if with_chunks:
            return await self.pipeline.delete_with_chunks(doc_id)
        await self.pipeline.delete(doc_id)
        return 1

    async def list_documents(self) -> List[StoredDocument]:
        return await self.pipeline.list_documents()

    async def chunk_text(self, text: str, options: Optional[ChunkOptions] = None) -> List[str]:
        return await self.pipeline.chunk_text(text, options)

    # ------------------------------------------------------------------
    # 检索（永不抛出）
    # ------------------------------------------------------------------

    async def retrieve(self, query: str, n_results: Optional[int] = None,
                       context: Optional[RetrievalContext] = None) -> str:
        """
        单次检索，返回可读字符串

        未配置时返回 "No document source configured." 提示
        """
        try:
            pipeline = self.pipeline
        except ConfigurationMissing as e:
            self.logger.warning(f"检索跳过，RAG系统未配置: {e.message}")
            if context is not None:
                context.record("vector", query, "error", e.message)
            return RetrievalResult.failure(ErrorKind.CONFIGURATION_MISSING, e.message).render()
        return await pipeline.retrieve(query, n_results, context)

    async def hybrid_retrieve(self, query: str, n_results: Optional[int] = None,
                              filters: Optional[Dict[str, Any]] = None,
                              context: Optional[RetrievalContext] = None) -> List[RankedCandidate]:
        try:
            pipeline = self.pipeline
        except ConfigurationMissing as e:
            self.logger.warning(f"混合检索跳过，RAG系统未配置: {e.message}")
            if context is not None:
                context.record("hybrid", query, "error", e.message)
            return []
        return await pipeline.hybrid_retrieve(query, n_results, filters, context)

    async def iterative_retrieve(self, query: str, steps: Optional[int] = None,
                                 n_results: Optional[int] = None,
                                 context: Optional[RetrievalContext] = None) -> List[str]:
        """迭代检索；未配置时返回 steps 个空上下文"""
        try:
            pipeline = self.pipeline
        except ConfigurationMissing as e:
            self.logger.warning(f"迭代检索跳过，RAG系统未配置: {e.message}")
            if context is not None:
                context.record("iterative", query, "error", e.message)
            return [""] * (steps if steps is not None else RAGConfig().iterative_steps)
        return await pipeline.iterative_retrieve(query, steps=steps, n_results=n_results, context=context)

    async def status(self) -> Dict[str, Any]:
        """获取RAG状态（未配置时也返回描述）"""
        try:
            pipeline = self.pipeline
        except ConfigurationMissing as e:
            return {"configured": False, "message": e.message}
        status = await pipeline.status()
        status["configured"] = True
        return status

    async def close(self) -> None:
        """关闭向量库与 HTTP 客户端"""
        if self._pipeline is None:
            return
        pipeline = self._pipeline
        self._pipeline = None
        await pipeline.close()
        for collaborator in (pipeline.embedder.embed_fn, pipeline.generate):
            aclose = getattr(collaborator, "aclose", None)
            if aclose is not None:
                await aclose()
        self.logger.info("RAG服务已关闭")


@lru_cache(maxsize=1)
def get_rag_service() -> RAGService:
    """获取RAG服务实例（依赖注入）"""
    return RAGService()
