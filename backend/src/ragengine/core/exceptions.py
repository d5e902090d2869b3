#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
统一异常定义

- StoreUnavailable: 向量库无法连接或查询失败
- EmbeddingFailure: 单条或查询向量化失败
- ConfigurationMissing: 未配置向量库/嵌入函数
- GenerationFailure: 生成函数调用失败
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    STORE_UNAVAILABLE = "store_unavailable"
    EMBEDDING_FAILURE = "embedding_failure"
    CONFIGURATION_MISSING = "configuration_missing"
    GENERATION_FAILURE = "generation_failure"


class RAGException(Exception):
    kind: ErrorKind = ErrorKind.STORE_UNAVAILABLE

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class StoreUnavailable(RAGException):
    kind = ErrorKind.STORE_UNAVAILABLE


class EmbeddingFailure(RAGException):
    kind = ErrorKind.EMBEDDING_FAILURE


class ConfigurationMissing(RAGException):
    kind = ErrorKind.CONFIGURATION_MISSING


class GenerationFailure(RAGException):
    kind = ErrorKind.GENERATION_FAILURE
