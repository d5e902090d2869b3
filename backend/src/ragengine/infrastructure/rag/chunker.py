#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Semantic Chunker - 语义分块器

两种策略：
- 段落模式：按空行切分段落，贪心累积到 max_size
- 嵌入模式：按句子切分并计算句向量，同样按长度贪心累积

两种模式最后都会把短于 min_size 的块并入前一个块（不会并入后一个块）。
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .embedder import Embedder
from .errors import ConfigurationMissing
from .vectorstores.base import StoredDocument, sanitize_metadata

logger = logging.getLogger(__name__)

_PARAGRAPH_BOUNDARY = re.compile(r"(\n\s*\n)")
_SENTENCE_BOUNDARY = re.compile(r"((?<=[.!?\n])\s+)")

# (前置分隔符, 单元文本)
Unit = Tuple[str, str]


@dataclass
class DocumentChunk:
    """分块数据类"""
    chunk_id: str
    parent_id: str
    text: str
    chunk_index: int
    chunk_total: int
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_document(self) -> StoredDocument:
        return StoredDocument(id=self.chunk_id, content=self.text, metadata=sanitize_metadata(self.meta))


def chunk_id_for(parent_id: str, chunk_index: int) -> str:
    """生成分块ID: <parentId>::chunk<N>"""
    return f"{parent_id}::chunk{chunk_index}"


class SemanticChunker:
    """语义分块器（无内部状态，每次调用重新计算）"""

    def __init__(self, max_size: int = 1200, min_size: int = 300, embedder: Optional[Embedder] = None):
        """
        初始化分块器

        Args:
            max_size: 分块最大字符数（默认1200）
            min_size: 分块最小字符数（默认300）
            embedder: 嵌入器（仅嵌入模式需要）
        """
        self.max_size = max_size
        self.min_size = min_size
        self.embedder = embedder
        self.logger = logging.getLogger(__name__)

    def chunk(self, text: str, max_size: Optional[int] = None, min_size: Optional[int] = None) -> List[str]:
        """
        段落模式分块

        分块内部保留原文的分隔符，按各分块之间的原分隔符拼接即可还原原文。

        Args:
            text: 要分块的文本
            max_size: 最大字符数（覆盖默认值）
            min_size: 最小字符数（覆盖默认值）

        Returns:
            List[str]: 按原文顺序排列的分块
        """
        max_size = self.max_size if max_size is None else max_size
        min_size = self.min_size if min_size is None else min_size
        if not text or not text.strip():
            return []

        paragraphs = self._split_units(_PARAGRAPH_BOUNDARY, text)
        chunks = self._accumulate(paragraphs, max_size)
        merged = self._merge_small(chunks, min_size)
        self.logger.debug(f"段落分块完成: {len(paragraphs)} 段 -> {len(merged)} 块")
        return [piece for _, piece in merged]

    async def chunk_async(self, text: str, max_size: Optional[int] = None,
                          min_size: Optional[int] = None) -> List[str]:
        """
        嵌入模式分块：按句子切分并计算句向量，边界仍按长度选择

        Raises:
            ConfigurationMissing: 未配置嵌入器
            EmbeddingFailure: 句子嵌入失败
        """
        max_size = self.max_size if max_size is None else max_size
        min_size = self.min_size if min_size is None else min_size
        if not text or not text.strip():
            return []
        if self.embedder is None:
            raise ConfigurationMissing("嵌入模式分块需要配置嵌入器")

        sentences = self._split_units(_SENTENCE_BOUNDARY, text)
        # 逐句顺序嵌入
        embeddings = await self.embedder.embed_batch([s.strip() for _, s in sentences if s.strip()])
        self.logger.debug(
            f"句子嵌入完成: {len(embeddings)} 句, dim={embeddings[0].dimension if embeddings else 0}"
        )

        chunks = self._accumulate(sentences, max_size)
        merged = self._merge_small(chunks, min_size)
        self.logger.debug(f"嵌入分块完成: {len(sentences)} 句 -> {len(merged)} 块")
        return [piece for _, piece in merged]

    @staticmethod
    def split_sentences(text: str) -> List[str]:
        """按 . ! ? 换行 后接空白 切分句子"""
        units = SemanticChunker._split_units(_SENTENCE_BOUNDARY, text)
        return [unit.strip() for _, unit in units if unit.strip()]

    def build_chunks(self, parent_id: str, pieces: List[str],
                     meta: Optional[Dict[str, Any]] = None) -> List[DocumentChunk]:
        """把分块文本转换为带父文档元数据的 DocumentChunk 列表"""
        meta = meta or {}
        total = len(pieces)
        chunks = []
        for index, piece in enumerate(pieces, start=1):
            chunks.append(DocumentChunk(
                chunk_id=chunk_id_for(parent_id, index),
                parent_id=parent_id,
                text=piece,
                chunk_index=index,
                chunk_total=total,
                meta={
                    **meta,
                    "chunkIndex": index,
                    "chunkTotal": total,
                    "parentId": parent_id,
                },
            ))
        return chunks

    @staticmethod
    def _split_units(pattern: "re.Pattern[str]", text: str) -> List[Unit]:
        """按捕获分组切分，每个单元带上它前面的原分隔符（首个单元为空串）"""
        parts = pattern.split(text)
        units: List[Unit] = [("", parts[0])]
        for index in range(1, len(parts), 2):
            units.append((parts[index], parts[index + 1]))
        return units

    def _accumulate(self, units: List[Unit], max_size: int) -> List[Unit]:
        chunks: List[Unit] = []
        lead, current = "", None
        for separator, unit in units:
            if current is None:
                current = unit
            elif current.strip() and unit.strip() and len(current + separator + unit) > max_size:
                chunks.append((lead, current))
                lead, current = separator, unit
            else:
                current = current + separator + unit
        if current is not None:
            chunks.append((lead, current))
        return chunks

    def _merge_small(self, chunks: List[Unit], min_size: int) -> List[Unit]:
        merged: List[Unit] = []
        for separator, piece in chunks:
            if len(piece) < min_size and merged:
                lead, previous = merged[-1]
                merged[-1] = (lead, previous + separator + piece)
            else:
                merged.append((separator, piece))
        return merged
