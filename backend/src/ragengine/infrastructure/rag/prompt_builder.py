#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Prompt Builder - 上下文构造器

把检索到的候选文档转换为可读上下文，供生成函数或调用方使用
"""

from typing import Sequence

NO_RESULTS_MESSAGE = "No relevant documents found in the knowledge base."
DOCUMENT_SEPARATOR = "\n\n---\n\n"
CONTEXT_SEPARATOR = "\n\n"


def format_documents(candidates: Sequence) -> str:
    """
    渲染检索结果：
    Document {i} (ID: {id}, Distance: {distance:.4f}):\\n{content}
    以分隔线连接；空列表返回固定提示
    """
    if not candidates:
        return NO_RESULTS_MESSAGE
    return DOCUMENT_SEPARATOR.join(
        f"Document {index} (ID: {doc.id}, Distance: {doc.distance:.4f}):\n{doc.content}"
        for index, doc in enumerate(candidates, start=1)
    )


def build_context(candidates: Sequence) -> str:
    """拼接候选内容作为迭代检索的上下文（可为空串）"""
    return CONTEXT_SEPARATOR.join(doc.content for doc in candidates)

