#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Qdrant Store - Qdrant向量数据库封装

实现 VectorStoreAdapter：upsert / delete / query / list_all。
- 点ID为文档id的 uuid5，payload 中保存原始 doc_id、content、metadata
- 集合在首次写入时按向量维度惰性创建
- 返回距离（越小越相似），cosine 分数换算为 1 - score
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence

from qdrant_client import AsyncQdrantClient, models

from ..embedder import Embedder
from ..errors import StoreUnavailable
from .base import StoredDocument, VectorHit, sanitize_metadata

logger = logging.getLogger(__name__)

_POINT_NAMESPACE = uuid.UUID("6f1d3c1e-8a52-4f0b-9d7e-3a1c5b2e4f60")

_DISTANCE_MAP = {
    "cosine": models.Distance.COSINE,
    "euclidean": models.Distance.EUCLID,
    "dot": models.Distance.DOT,
}


def point_id_for(doc_id: str) -> str:
    """文档id -> Qdrant点ID（确定性）"""
    return str(uuid.uuid5(_POINT_NAMESPACE, doc_id))


class QdrantStore:
    """Qdrant向量存储封装"""

    def __init__(self, embedder: Embedder, url: Optional[str] = "http://localhost:6333",
                 api_key: Optional[str] = None, collection_name: str = "kb_documents",
                 distance: str = "cosine", location: Optional[str] = None,
                 client: Optional[AsyncQdrantClient] = None, scroll_batch: int = 256):
        """
        初始化Qdrant客户端

        Args:
            embedder: 嵌入器（写入和查询时向量化文本）
            url: Qdrant服务URL
            api_key: API密钥（可选）
            collection_name: 集合名称
            distance: 距离度量 ("cosine", "euclidean", "dot")
            location: 本地模式位置（如 ":memory:"），设置后忽略 url
            client: 预先构造的客户端（测试注入）
        """
        if distance not in _DISTANCE_MAP:
            raise ValueError(f"不支持的距离度量: {distance}")

        self.embedder = embedder
        self.url = url
        self.collection_name = collection_name
        self.distance = distance
        self.scroll_batch = scroll_batch
        self.logger = logging.getLogger(__name__)

        if client is not None:
            self._client = client
        elif location:
            self._client = AsyncQdrantClient(location=location)
        else:
            self._client = AsyncQdrantClient(url=url, api_key=api_key)
        self._collection_ready = False

    async def _collection_exists(self) -> bool:
        if self._collection_ready:
            return True
        self._collection_ready = await self._client.collection_exists(self.collection_name)
        return self._collection_ready

    async def _ensure_collection(self, vector_size: int) -> None:
        """确保集合存在，如果不存在则按向量维度创建"""
        if await self._collection_exists():
            return
        self.logger.info(f"集合 {self.collection_name} 不存在，自动创建 (dim={vector_size}, distance={self.distance})")
        await self._client.create_collection(
            collection_name=self.collection_name,
            vectors_config=models.VectorParams(size=vector_size, distance=_DISTANCE_MAP[self.distance]),
        )
        self._collection_ready = True

    def _to_distance(self, score: float) -> float:
        if self.distance == "cosine":
            return 1.0 - float(score)
        if self.distance == "dot":
            return -float(score)
        return float(score)

    async def upsert(self, documents: Sequence[StoredDocument]) -> int:
        """
        批量插入或更新文档（同id覆盖）

        Returns:
            int: 写入数量

        Raises:
            EmbeddingFailure: 文档向量化失败
            StoreUnavailable: 写入失败
        """
        if not documents:
            return 0

        points = []
        for doc in documents:
            embedding = await self.embedder.embed_single(doc.content)
            points.append(models.PointStruct(
                id=point_id_for(doc.id),
                vector=embedding.vector.tolist(),
                payload={
                    "doc_id": doc.id,
                    "content": doc.content,
                    "metadata": sanitize_metadata(doc.metadata),
                },
            ))

        try:
            await self._ensure_collection(len(points[0].vector))
            await self._client.upsert(collection_name=self.collection_name, points=points)
        except Exception as e:
            self.logger.error(f"upsert失败: {e}")
            raise StoreUnavailable(f"Qdrant upsert失败: {e}", e)

        self.logger.info(f"成功upsert {len(points)} 个文档到集合: {self.collection_name}")
        return len(points)

    async def delete(self, ids: Sequence[str]) -> int:
        """根据文档id列表删除"""
        if not ids:
            return 0
        try:
            if not await self._collection_exists():
                return 0
            await self._client.delete(
                collection_name=self.collection_name,
                points_selector=models.PointIdsList(points=[point_id_for(i) for i in ids]),
            )
        except Exception as e:
            self.logger.error(f"删除文档失败: {e}")
            raise StoreUnavailable(f"Qdrant delete失败: {e}", e)

        self.logger.info(f"成功删除 {len(ids)} 个文档")
        return len(ids)

    async def query(self, query_text: str, n_results: int) -> List[VectorHit]:
        """
        向量搜索

        Returns:
            List[VectorHit]: 按距离升序
        """
        try:
            if not await self._collection_exists():
                return []
        except Exception as e:
            raise StoreUnavailable(f"Qdrant不可用: {e}", e)

        query_embedding = await self.embedder.embed_single(query_text)
        try:
            response = await self._client.query_points(
                collection_name=self.collection_name,
                query=query_embedding.vector.tolist(),
                limit=n_results,
                with_payload=True,
                with_vectors=False,
            )
        except Exception as e:
            self.logger.error(f"向量搜索失败: {e}")
            raise StoreUnavailable(f"Qdrant查询失败: {e}", e)

        hits = [self._to_hit(point) for point in response.points]
        hits.sort(key=lambda h: h.distance)
        self.logger.debug(f"向量搜索完成: 查询维度={query_embedding.dimension}, 返回结果={len(hits)}")
        return hits

    async def list_all(self) -> List[StoredDocument]:
        """分页读取集合中全部文档"""
        documents: List[StoredDocument] = []
        try:
            if not await self._collection_exists():
                return documents
            offset = None
            while True:
                points, offset = await self._client.scroll(
                    collection_name=self.collection_name,
                    limit=self.scroll_batch,
                    offset=offset,
                    with_payload=True,
                    with_vectors=False,
                )
                for point in points:
                    payload = point.payload or {}
                    documents.append(StoredDocument(
                        id=payload.get("doc_id", str(point.id)),
                        content=payload.get("content", ""),
                        metadata=dict(payload.get("metadata") or {}),
                    ))
                if offset is None:
                    break
        except Exception as e:
            self.logger.error(f"列出文档失败: {e}")
            raise StoreUnavailable(f"Could not list documents. Is Qdrant running and accessible? ({e})", e)

        return documents

    def _to_hit(self, point: Any) -> VectorHit:
        payload: Dict[str, Any] = point.payload or {}
        return VectorHit(
            id=payload.get("doc_id", str(point.id)),
            content=payload.get("content", ""),
            metadata=dict(payload.get("metadata") or {}),
            distance=self._to_distance(point.score),
        )

    async def health_check(self) -> bool:
        """健康检查"""
        try:
            await self._client.get_collections()
            return True
        except Exception as e:
            self.logger.error(f"Qdrant健康检查失败: {e}")
            return False

    async def close(self) -> None:
        await self._client.close()
