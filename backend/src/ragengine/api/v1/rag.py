#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
RAG API端点

提供文档写入/删除、分块预览、单次/混合/迭代检索以及状态查询接口
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ...infrastructure.rag import (
    ChunkOptions,
    ConfigurationMissing,
    EmbeddingFailure,
    RAGException,
    RetrievalContext,
    StoreUnavailable,
)
from ...services.rag_service import RAGService, get_rag_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rag", tags=["RAG"])


# Pydantic 模型
class DocumentIn(BaseModel):
    """文档"""
    id: str = Field(min_length=1)
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class UpsertRequest(BaseModel):
    documents: List[DocumentIn]


class UpsertResponse(BaseModel):
    upserted: int


class ChunkingFields(BaseModel):
    max_size: Optional[int] = Field(default=None, ge=1)
    min_size: Optional[int] = Field(default=None, ge=0)
    use_embedding_chunking: bool = False

    def to_options(self) -> ChunkOptions:
        return ChunkOptions(
            max_size=self.max_size,
            min_size=self.min_size,
            use_embedding_chunking=self.use_embedding_chunking,
        )


class ChunkedUpsertRequest(ChunkingFields):
    """分块写入请求"""
    document: DocumentIn


class DocumentOut(BaseModel):
    id: str
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ChunkedUpsertResponse(BaseModel):
    parent_id: str
    chunks: List[DocumentOut]


class DeleteResponse(BaseModel):
    deleted: int


class DocumentListResponse(BaseModel):
    """文档列表响应"""
    documents: List[DocumentOut]
    total_count: int


class ChunkRequest(ChunkingFields):
    """分块预览请求"""
    text: str


class ChunkResponse(BaseModel):
    chunks: List[str]
    count: int


class RetrieveRequest(BaseModel):
    """单次检索请求"""
    query: str
    n_results: int = Field(default=3, ge=1, le=50)


class RetrieveResponse(BaseModel):
    result: str
    provenance: Dict[str, Any]


class HybridRequest(BaseModel):
    """混合检索请求"""
    query: str
    n_results: int = Field(default=5, ge=1, le=50)
    filters: Optional[Dict[str, Any]] = None


class HybridResponse(BaseModel):
    results: List[Dict[str, Any]]
    provenance: Dict[str, Any]


class IterativeRequest(BaseModel):
    """迭代检索请求"""
    query: str
    steps: int = Field(default=2, ge=0, le=10)
    n_results: int = Field(default=3, ge=1, le=50)


class IterativeResponse(BaseModel):
    contexts: List[str]
    provenance: Dict[str, Any]


def _to_http_error(action: str, error: Exception) -> HTTPException:
    """异常 -> HTTP 状态码"""
    if isinstance(error, (ConfigurationMissing, StoreUnavailable)):
        return HTTPException(status_code=503, detail=f"{action}失败: {error}")
    if isinstance(error, EmbeddingFailure):
        return HTTPException(status_code=502, detail=f"{action}失败: {error}")
    if isinstance(error, ValueError):
        return HTTPException(status_code=400, detail=f"{action}失败: {error}")
    return HTTPException(status_code=500, detail=f"{action}失败: {error}")


@router.post("/documents", response_model=UpsertResponse)
async def upsert_documents(request: UpsertRequest, service: RAGService = Depends(get_rag_service)):
    """写入文档（同id覆盖）"""
    try:
        count = await service.upsert([doc.model_dump() for doc in request.documents])
        return UpsertResponse(upserted=count)
    except (RAGException, ValueError) as e:
        logger.error(f"文档写入失败: {e}")
        raise _to_http_error("文档写入", e)


@router.post("/documents/chunked", response_model=ChunkedUpsertResponse)
async def upsert_chunked_document(request: ChunkedUpsertRequest,
                                  service: RAGService = Depends(get_rag_service)):
    """分块后写入：每个分块作为独立文档"""
    try:
        chunks = await service.upsert_with_chunks(request.document.model_dump(), request.to_options())
    except (RAGException, ValueError) as e:
        logger.error(f"分块写入失败: {e}")
        raise _to_http_error("分块写入", e)

    return ChunkedUpsertResponse(
        parent_id=request.document.id,
        chunks=[DocumentOut(id=c.chunk_id, content=c.text, metadata=c.meta) for c in chunks],
    )


@router.delete("/documents/{doc_id:path}", response_model=DeleteResponse)
async def delete_document(doc_id: str, with_chunks: bool = Query(default=False),
                          service: RAGService = Depends(get_rag_service)):
    """删除文档（with_chunks=true 时同时删除其分块）"""
    try:
        deleted = await service.delete(doc_id, with_chunks=with_chunks)
        return DeleteResponse(deleted=deleted)
    except RAGException as e:
        logger.error(f"删除文档失败: {e}")
        raise _to_http_error("删除文档", e)


@router.get("/documents", response_model=DocumentListResponse)
async def list_documents(service: RAGService = Depends(get_rag_service)):
    """列出文档"""
    try:
        documents = await service.list_documents()
    except RAGException as e:
        logger.error(f"列出文档失败: {e}")
        raise _to_http_error("列出文档", e)

    return DocumentListResponse(
        documents=[DocumentOut(id=d.id, content=d.content, metadata=d.metadata) for d in documents],
        total_count=len(documents),
    )


@router.post("/chunk", response_model=ChunkResponse)
async def chunk_text(request: ChunkRequest, service: RAGService = Depends(get_rag_service)):
    """分块预览（不写入）"""
    try:
        chunks = await service.chunk_text(request.text, request.to_options())
        return ChunkResponse(chunks=chunks, count=len(chunks))
    except RAGException as e:
        logger.error(f"分块失败: {e}")
        raise _to_http_error("分块", e)


@router.post("/retrieve", response_model=RetrieveResponse)
async def retrieve(request: RetrieveRequest, service: RAGService = Depends(get_rag_service)):
    """单次向量检索，返回渲染后的上下文字符串"""
    context = RetrievalContext()
    result = await service.retrieve(request.query, request.n_results, context=context)
    return RetrieveResponse(result=result, provenance=context.to_dict())


@router.post("/hybrid", response_model=HybridResponse)
async def hybrid_retrieve(request: HybridRequest, service: RAGService = Depends(get_rag_service)):
    """混合检索（向量 + 关键词 → RRF → 复排）"""
    context = RetrievalContext()
    candidates = await service.hybrid_retrieve(
        request.query, n_results=request.n_results, filters=request.filters, context=context
    )
    return HybridResponse(results=[c.to_dict() for c in candidates], provenance=context.to_dict())


@router.post("/iterative", response_model=IterativeResponse)
async def iterative_retrieve(request: IterativeRequest, service: RAGService = Depends(get_rag_service)):
    """迭代检索-生成循环"""
    context = RetrievalContext()
    contexts = await service.iterative_retrieve(
        request.query, steps=request.steps, n_results=request.n_results, context=context
    )
    return IterativeResponse(contexts=contexts, provenance=context.to_dict())


@router.get("/status")
async def get_status(service: RAGService = Depends(get_rag_service)):
    """获取RAG系统状态"""
    return await service.status()
