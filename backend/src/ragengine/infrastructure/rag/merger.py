#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Evidence Merger - 证据合并器

将向量检索和关键词检索的结果通过 Reciprocal Rank Fusion (RRF) 合并：
    rrf(id) = Σ 1 / rank(id, list)
同一文档出现在两个列表中时累加两份贡献。
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .retrievers.retriever_keyword import KeywordHit
from .vectorstores.base import MetadataValue, VectorHit

logger = logging.getLogger(__name__)


@dataclass
class RankedCandidate:
    """融合/重排后的候选文档"""
    id: str
    content: str
    metadata: Dict[str, MetadataValue]
    distance: float
    rrf: float = 0.0
    transformer_score: float = 0.0
    vector_rank: Optional[int] = None
    keyword_rank: Optional[int] = None
    sources: List[str] = field(default_factory=list)

    @property
    def type(self) -> str:
        return "hybrid" if len(self.sources) > 1 else (self.sources[0] if self.sources else "unknown")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "metadata": dict(self.metadata),
            "distance": self.distance,
            "rrf": self.rrf,
            "transformerScore": self.transformer_score,
            "sources": list(self.sources),
        }


def matches_filter(metadata: Mapping[str, Any], filters: Optional[Mapping[str, Any]]) -> bool:
    """AND 语义，逐键精确相等"""
    if not filters:
        return True
    return all(key in metadata and metadata[key] == value for key, value in filters.items())


class EvidenceMerger:
    """RRF 证据合并器"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def merge(self, vector_results: List[VectorHit], keyword_results: List[KeywordHit],
              filters: Optional[Mapping[str, Any]] = None) -> List[RankedCandidate]:
        """
        合并向量检索和关键词检索结果

        Args:
            vector_results: 向量检索结果（按距离升序）
            keyword_results: 关键词检索结果（按发现顺序）
            filters: 元数据过滤条件（AND，精确相等）

        Returns:
            List[RankedCandidate]: 按 RRF 降序排列（平分时按向量排名、再按id）
        """
        self.logger.debug(f"开始合并证据: vector={len(vector_results)}, keyword={len(keyword_results)}")

        merged: Dict[str, RankedCandidate] = {}

        for rank, hit in enumerate(vector_results, start=1):
            if hit.id in merged:
                # 同一列表内重复id只计一次
                continue
            merged[hit.id] = RankedCandidate(
                id=hit.id,
                content=hit.content,
                metadata=dict(hit.metadata),
                distance=hit.distance,
                rrf=1.0 / rank,
                vector_rank=rank,
                sources=["vector"],
            )

        for rank, hit in enumerate(keyword_results, start=1):
            existing = merged.get(hit.id)
            if existing is None:
                merged[hit.id] = RankedCandidate(
                    id=hit.id,
                    content=hit.content,
                    metadata=dict(hit.metadata),
                    distance=hit.distance,
                    rrf=1.0 / rank,
                    keyword_rank=rank,
                    sources=["keyword"],
                )
            elif existing.keyword_rank is None:
                existing.rrf += 1.0 / rank
                existing.keyword_rank = rank
                existing.sources.append("keyword")
                # 补齐首个来源缺失的字段
                if not existing.content:
                    existing.content = hit.content
                for key, value in hit.metadata.items():
                    existing.metadata.setdefault(key, value)

        candidates = list(merged.values())

        if filters:
            before = len(candidates)
            candidates = [c for c in candidates if matches_filter(c.metadata, filters)]
            self.logger.debug(f"元数据过滤: {before} -> {len(candidates)}")

        candidates.sort(key=lambda c: (
            -c.rrf,
            c.vector_rank if c.vector_rank is not None else math.inf,
            c.id,
        ))

        self.logger.info(
            f"证据合并完成: 输入({len(vector_results)}+{len(keyword_results)}) -> 输出({len(candidates)})"
        )
        return candidates

    def get_merge_statistics(self, candidates: List[RankedCandidate]) -> Dict[str, Any]:
        """获取合并统计信息"""
        if not candidates:
            return {}

        type_counts: Dict[str, int] = {}
        for candidate in candidates:
            type_counts[candidate.type] = type_counts.get(candidate.type, 0) + 1

        scores = [c.rrf for c in candidates]
        return {
            "total_candidates": len(candidates),
            "type_distribution": type_counts,
            "rrf_stats": {
                "min": min(scores),
                "max": max(scores),
                "avg": sum(scores) / len(scores),
            },
            "hybrid_count": type_counts.get("hybrid", 0),
        }
