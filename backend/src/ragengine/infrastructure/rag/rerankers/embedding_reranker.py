#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Embedding Reranker - 向量余弦复排

对查询和每个候选文档分别做嵌入，按余弦相似度降序重排。
单个候选嵌入失败时该候选得分为0，不影响其余候选。
"""

import asyncio
import logging
from typing import List, Optional

from ..embedder import Embedder, EmbeddingResult, cosine_similarity
from ..errors import EmbeddingFailure
from ..merger import RankedCandidate

logger = logging.getLogger(__name__)

FAILED_SCORE = 0.0


class EmbeddingReranker:
    """基于嵌入余弦相似度的重排器"""

    def __init__(self, embedder: Embedder, max_concurrency: int = 8):
        """
        初始化重排器

        Args:
            embedder: 嵌入器
            max_concurrency: 同时进行的候选嵌入数量上限
        """
        self.embedder = embedder
        self.max_concurrency = max(1, max_concurrency)
        self.logger = logging.getLogger(__name__)

    async def rerank(self, query: str, candidates: List[RankedCandidate],
                     top_k: Optional[int] = None) -> List[RankedCandidate]:
        """
        重新排序候选

        Args:
            query: 查询文本
            candidates: 融合后的候选（顺序作为平分时的次序）
            top_k: 返回数量（None 表示全部）

        Returns:
            List[RankedCandidate]: 按 transformer_score 降序
        """
        if not candidates:
            return []

        self.logger.debug(f"开始向量复排: query长度={len(query)}, 候选数={len(candidates)}")

        query_embedding: Optional[EmbeddingResult] = None
        try:
            query_embedding = await self.embedder.embed_single(query)
        except EmbeddingFailure as e:
            self.logger.error(f"查询向量化失败，所有候选得分置0: {e}")

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _score(candidate: RankedCandidate) -> float:
            if query_embedding is None:
                return FAILED_SCORE
            async with semaphore:
                try:
                    doc_embedding = await self.embedder.embed_single(candidate.content)
                    return cosine_similarity(query_embedding.vector, doc_embedding.vector)
                except (EmbeddingFailure, ValueError) as e:
                    self.logger.error(f"候选复排失败 {candidate.id}: {e}")
                    return FAILED_SCORE

        scores = await asyncio.gather(*(_score(c) for c in candidates))

        for candidate, score in zip(candidates, scores):
            candidate.transformer_score = score

        # sort 是稳定排序，平分时保持融合顺序
        reranked = sorted(candidates, key=lambda c: c.transformer_score, reverse=True)
        if top_k is not None:
            reranked = reranked[:top_k]

        self.logger.info(f"向量复排完成: 输入 {len(candidates)}, 返回 {len(reranked)} 个结果")
        return reranked
