from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class QdrantSettings(BaseModel):
    url: Optional[str] = "http://localhost:6333"
    api_key: Optional[str] = None
    collection: str = "kb_documents"
    distance: str = "cosine"
    # 本地模式（如 ":memory:"），设置后忽略 url
    location: Optional[str] = None


class EmbeddingSettings(BaseModel):
    base_url: Optional[str] = None
    model: str = ""
    api_key: Optional[str] = None
    timeout: float = 60.0


class GenerationSettings(BaseModel):
    enabled: bool = False
    base_url: Optional[str] = None
    model: str = ""
    api_key: Optional[str] = None
    temperature: float = 0.2
    max_tokens: int = 256
    timeout: float = 120.0


class RAGSettings(BaseModel):
    chunk_max_size: int = 1200
    chunk_min_size: int = 300
    n_results: int = 3
    hybrid_n_results: int = 5
    vector_overfetch: int = 2
    type_overfetch: int = 10
    keyword_enabled: bool = True
    keyword_distance: float = 0.5
    rerank_concurrency: int = 8
    iterative_steps: int = 2
    iterative_n_results: int = 3
    log_level: str = "INFO"


class AppSettings(BaseSettings):
    # 基础
    app_name: str = "RAG Engine API"
    env: str = "dev"
    debug: bool = True

    qdrant: QdrantSettings = Field(default_factory=QdrantSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    rag: RAGSettings = Field(default_factory=RAGSettings)

    # ENV 优先（允许使用 backend/.env 本地文件）
    model_config = SettingsConfigDict(
        env_file="backend/.env",
        env_file_encoding="utf-8",
        env_prefix="APP_",
        env_nested_delimiter="__",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """读取 ENV（APP_* 前缀，嵌套字段用 __ 分隔）生成统一 Settings。"""
    return AppSettings()


def settings_diagnostics() -> Dict[str, Any]:
    """生成运行配置简要诊断信息（不含密钥）。"""
    s = get_settings()
    return {
        "env": s.env,
        "qdrant": {
            "url": None if s.qdrant.location else s.qdrant.url,
            "location": s.qdrant.location,
            "collection": s.qdrant.collection,
            "distance": s.qdrant.distance,
            "api_key_set": bool(s.qdrant.api_key),
        },
        "embedding": {
            "base_url": s.embedding.base_url,
            "model": s.embedding.model,
            "api_key_set": bool(s.embedding.api_key),
        },
        "generation": {
            "enabled": s.generation.enabled,
            "model": s.generation.model,
        },
        "rag": s.rag.model_dump(),
    }
