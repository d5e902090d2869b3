#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Vector Retriever - 向量检索器

基于向量库适配器的语义检索
"""

import logging
from typing import Any, Dict, List

from ..errors import RAGException, StoreUnavailable
from ..vectorstores.base import VectorHit, VectorStoreAdapter

logger = logging.getLogger(__name__)


class VectorRetriever:
    """向量检索器"""

    def __init__(self, store: VectorStoreAdapter):
        """
        初始化向量检索器

        Args:
            store: 向量库适配器
        """
        self.store = store
        self.logger = logging.getLogger(__name__)
        self._stats = {"queries": 0, "failures": 0, "hits": 0}

    async def search(self, query: str, top_k: int = 10) -> List[VectorHit]:
        """
        向量检索

        Args:
            query: 查询文本
            top_k: 返回结果数量

        Returns:
            List[VectorHit]: 按距离升序排列

        Raises:
            StoreUnavailable: 向量库查询失败
        """
        self._stats["queries"] += 1
        if top_k <= 0:
            return []
        self.logger.debug(f"开始向量检索: query='{query[:50]}...', top_k={top_k}")
        try:
            hits = await self.store.query(query, top_k)
        except RAGException:
            self._stats["failures"] += 1
            raise
        except Exception as e:
            self._stats["failures"] += 1
            raise StoreUnavailable(f"向量检索失败: {e}", e)

        hits = sorted(hits, key=lambda h: h.distance)
        self._stats["hits"] += len(hits)
        self.logger.info(f"向量检索完成: 返回 {len(hits)} 个结果")
        return hits

    def get_statistics(self) -> Dict[str, Any]:
        return dict(self._stats)
