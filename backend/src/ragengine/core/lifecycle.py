import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from ..services.rag_service import get_rag_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # 管线在首次请求时惰性构造
    logger.info(f"{app.title} 启动")
    yield
    await get_rag_service().close()
    logger.info("RAG服务连接已关闭")
