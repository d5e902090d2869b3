#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
RAG Errors - 检索结果类型

RetrievalResult 区分"真正的空结果"与"失败"，并在边界处渲染为字符串
"""

from dataclasses import dataclass, field
from typing import List, Optional, TYPE_CHECKING

from ...core.exceptions import (
    ConfigurationMissing,
    EmbeddingFailure,
    ErrorKind,
    GenerationFailure,
    RAGException,
    StoreUnavailable,
)
from .prompt_builder import format_documents

if TYPE_CHECKING:
    from .merger import RankedCandidate

__all__ = [
    "ConfigurationMissing",
    "EmbeddingFailure",
    "ErrorKind",
    "GenerationFailure",
    "NOT_CONFIGURED_MESSAGE",
    "RAGException",
    "RetrievalResult",
    "StoreUnavailable",
]

NOT_CONFIGURED_MESSAGE = "No document source configured."


@dataclass
class RetrievalResult:
    """检索结果：Ok(candidates) | Err(kind, message)"""
    ok: bool
    candidates: List["RankedCandidate"] = field(default_factory=list)
    error_kind: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, candidates: List["RankedCandidate"]) -> "RetrievalResult":
        return cls(ok=True, candidates=list(candidates))

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "RetrievalResult":
        return cls(ok=False, error_kind=kind, message=message)

    @classmethod
    def from_exception(cls, error: RAGException) -> "RetrievalResult":
        return cls.failure(error.kind, error.message)

    def render(self) -> str:
        """边界渲染：总是返回格式良好的字符串"""
        if self.ok:
            return format_documents(self.candidates)
        if self.error_kind == ErrorKind.CONFIGURATION_MISSING:
            return f"{NOT_CONFIGURED_MESSAGE} ({self.message})" if self.message else NOT_CONFIGURED_MESSAGE
        return f"Error retrieving documents: {self.message or self.error_kind.value}"
