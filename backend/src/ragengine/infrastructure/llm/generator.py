#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Generator - 生成函数

迭代检索循环需要一个 generate(query, context) -> str：
- passthrough_generate: 不调用模型的最简实现
- OpenAICompatibleGenerator: OpenAI 兼容 /chat/completions 调用
"""

import json
import logging
from typing import Awaitable, Callable, Dict, List, Optional

import httpx

from ...core.exceptions import ConfigurationMissing, GenerationFailure

logger = logging.getLogger(__name__)

GenerateFn = Callable[[str, str], Awaitable[str]]

CONTEXT_PREVIEW_CHARS = 100

DEFAULT_SYSTEM_PROMPT = (
    "You refine search queries for a multi-step retrieval system. "
    "Given the current question and the retrieved context, answer briefly and "
    "then state the follow-up information still needed, as a single search query."
)


async def passthrough_generate(query: str, context: str) -> str:
    """查询原样带上上下文开头，作为下一轮查询"""
    head = context[:CONTEXT_PREVIEW_CHARS].strip()
    if not head:
        return query
    return f"{query} {head}"


class OpenAICompatibleGenerator:
    """
    OpenAI 兼容生成器

    作为 GenerateFn 使用：await generator(query, context) -> str
    """

    def __init__(self, base_url: str, model: str, api_key: Optional[str] = None,
                 temperature: float = 0.2, max_tokens: int = 256, timeout: float = 120.0,
                 system_prompt: str = DEFAULT_SYSTEM_PROMPT,
                 client: Optional[httpx.AsyncClient] = None):
        if not base_url or not model:
            raise ConfigurationMissing("generation base_url/model 未配置")
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.system_prompt = system_prompt
        self._client = client
        self.logger = logging.getLogger(__name__)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            # 读取超时单独放宽
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(connect=30.0, read=self.timeout, write=30.0, pool=30.0)
            )
        return self._client

    def _build_messages(self, query: str, context: str) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": f"## Context\n\n{context or '(empty)'}\n\n## Question\n\n{query}"},
        ]

    async def __call__(self, query: str, context: str) -> str:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {
            "model": self.model,
            "messages": self._build_messages(query, context),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

        try:
            response = await self._get_client().post(
                f"{self.base_url}/chat/completions", json=payload, headers=headers
            )
        except httpx.TimeoutException as e:
            raise GenerationFailure(f"Request timeout after {self.timeout}s", e)
        except httpx.HTTPError as e:
            raise GenerationFailure(f"Network error: {e}", e)

        if response.status_code != 200:
            raise GenerationFailure(f"API error {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
            raise GenerationFailure(f"Invalid response format: {e}", e)

        if not content or not content.strip():
            raise GenerationFailure("Empty completion content")
        return content.strip()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
