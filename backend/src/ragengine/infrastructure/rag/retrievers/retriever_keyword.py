#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Keyword Retriever - 关键词检索器

对全量文档做大小写不敏感的子串匹配（不分词、不做词干化），
用于补充语义检索可能排得很靠后的精确词命中。
"""

import logging
from dataclasses import dataclass
from typing import Dict, List

from ..vectorstores.base import MetadataValue, StoredDocument, VectorStoreAdapter

logger = logging.getLogger(__name__)

KEYWORD_DISTANCE = 0.5


@dataclass
class KeywordHit:
    """关键词检索结果（无原生相似度，距离为占位值）"""
    id: str
    content: str
    metadata: Dict[str, MetadataValue]
    distance: float = KEYWORD_DISTANCE


def scan_documents(documents: List[StoredDocument], query: str,
                   placeholder_distance: float = KEYWORD_DISTANCE) -> List[KeywordHit]:
    """按发现顺序返回内容包含查询串的文档（空查询匹配所有非空文档）"""
    needle = query.lower()
    return [
        KeywordHit(id=doc.id, content=doc.content, metadata=dict(doc.metadata), distance=placeholder_distance)
        for doc in documents
        if doc.content and needle in doc.content.lower()
    ]


class KeywordRetriever:
    """关键词检索器"""

    def __init__(self, store: VectorStoreAdapter, placeholder_distance: float = KEYWORD_DISTANCE):
        """
        初始化关键词检索器

        Args:
            store: 向量库适配器（需提供 list_all）
            placeholder_distance: 关键词命中的占位距离
        """
        self.store = store
        self.placeholder_distance = placeholder_distance
        self.logger = logging.getLogger(__name__)

    async def search(self, query: str) -> List[KeywordHit]:
        """
        关键词检索

        Raises:
            StoreUnavailable: 无法列出文档
        """
        documents = await self.store.list_all()
        results = scan_documents(documents, query, self.placeholder_distance)
        self.logger.info(f"关键词检索完成: 扫描 {len(documents)} 个文档, 命中 {len(results)} 个")
        return results
