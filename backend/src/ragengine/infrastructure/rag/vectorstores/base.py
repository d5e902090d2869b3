#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Vector Store 适配器约定

引擎只依赖以下异步接口：upsert / delete / query / list_all。
距离越小越相似；引擎不做任何距离归一化。
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Union

logger = logging.getLogger(__name__)

MetadataValue = Union[str, int, float, bool, None]


@dataclass
class StoredDocument:
    """库中文档（id 唯一，重复 upsert 覆盖内容和元数据）"""
    id: str
    content: str
    metadata: Dict[str, MetadataValue] = field(default_factory=dict)


@dataclass
class VectorHit:
    """向量检索命中"""
    id: str
    content: str
    metadata: Dict[str, MetadataValue]
    distance: float


def sanitize_metadata(meta: Optional[Mapping[str, Any]]) -> Dict[str, MetadataValue]:
    """元数据标量化：非标量值转为字符串，无法转换时置为 None"""
    result: Dict[str, MetadataValue] = {}
    if not meta:
        return result
    for key, value in meta.items():
        if value is None or isinstance(value, (str, int, float, bool)):
            result[str(key)] = value
            continue
        try:
            result[str(key)] = str(value)
        except Exception as e:
            logger.warning(f"元数据字段无法转换为字符串，置为None: {key} ({e})")
            result[str(key)] = None
    return result


class VectorStoreAdapter(Protocol):
    async def upsert(self, documents: Sequence[StoredDocument]) -> int: ...

    async def delete(self, ids: Sequence[str]) -> int: ...

    async def query(self, query_text: str, n_results: int) -> List[VectorHit]: ...

    async def list_all(self) -> List[StoredDocument]: ...

    async def health_check(self) -> bool: ...

    async def close(self) -> None: ...
