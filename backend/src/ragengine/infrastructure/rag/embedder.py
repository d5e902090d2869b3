#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Embedder - 向量化器

包装一个异步嵌入函数（text -> vector），不依赖本地模型。
默认提供 OpenAI 兼容的 /embeddings 接口实现（硅基流动、OpenAI 等）。
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

import httpx
import numpy as np

from .errors import ConfigurationMissing, EmbeddingFailure

logger = logging.getLogger(__name__)

EmbedFn = Callable[[str], Awaitable[Sequence[float]]]


@dataclass
class EmbeddingResult:
    """嵌入结果数据类"""
    text: str
    vector: np.ndarray
    dimension: int


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """余弦相似度，任一向量范数为0时返回0"""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise ValueError(f"向量维度不一致: {a.shape} vs {b.shape}")
    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


class Embedder:
    """文本嵌入器 - 基于注入的嵌入函数"""

    def __init__(self, embed_fn: Optional[EmbedFn], model_name: str = "custom"):
        """
        初始化嵌入器

        Args:
            embed_fn: 异步嵌入函数
            model_name: 模型名称（仅用于日志与状态）
        """
        if embed_fn is None:
            raise ConfigurationMissing("未配置嵌入函数")
        self.embed_fn = embed_fn
        self.model_name = model_name
        self.logger = logging.getLogger(__name__)

    async def embed_single(self, text: str) -> EmbeddingResult:
        """
        对单个文本进行嵌入

        Args:
            text: 输入文本

        Returns:
            EmbeddingResult: 嵌入结果

        Raises:
            EmbeddingFailure: 文本为空或嵌入函数失败
        """
        if not text or not text.strip():
            raise EmbeddingFailure("输入文本不能为空")

        try:
            raw = await self.embed_fn(text)
            vector = np.asarray(raw, dtype=np.float32)
        except EmbeddingFailure:
            raise
        except Exception as e:
            self.logger.error(f"embedding调用失败: {e}")
            raise EmbeddingFailure(f"embedding调用失败: {e}", e)

        if vector.ndim != 1 or vector.size == 0:
            raise EmbeddingFailure(f"embedding返回了无效向量: shape={vector.shape}")

        return EmbeddingResult(text=text, vector=vector, dimension=int(vector.size))

    async def embed_batch(self, texts: List[str]) -> List[EmbeddingResult]:
        """顺序嵌入多个文本，任一失败即抛出 EmbeddingFailure"""
        results = []
        for text in texts:
            results.append(await self.embed_single(text))
        self.logger.debug(f"批量嵌入完成: {len(results)} 个结果")
        return results


class OpenAICompatibleEmbeddingFunction:
    """
    OpenAI 兼容 embedding API 调用（POST {base_url}/embeddings）

    作为 EmbedFn 使用：await fn("text") -> List[float]
    """

    def __init__(self, base_url: str, model: str, api_key: Optional[str] = None,
                 timeout: float = 60.0, client: Optional[httpx.AsyncClient] = None):
        if not base_url or not model:
            raise ConfigurationMissing("embedding base_url/model 未配置")
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self._client = client
        self.logger = logging.getLogger(__name__)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(connect=10.0, read=self.timeout, write=10.0, pool=10.0)
            )
        return self._client

    async def __call__(self, text: str) -> List[float]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {"model": self.model, "input": text}

        try:
            response = await self._get_client().post(
                f"{self.base_url}/embeddings", json=payload, headers=headers
            )
        except httpx.TimeoutException as e:
            raise EmbeddingFailure(f"embedding请求超时 ({self.timeout}s)", e)
        except httpx.HTTPError as e:
            raise EmbeddingFailure(f"embedding网络错误: {e}", e)

        if response.status_code != 200:
            raise EmbeddingFailure(
                f"embedding API返回错误 {response.status_code}: {response.text[:200]}"
            )

        try:
            data = response.json()
            return list(data["data"][0]["embedding"])
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise EmbeddingFailure(f"embedding响应格式无效: {e}", e)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
