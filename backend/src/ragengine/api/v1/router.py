from fastapi import APIRouter

from .rag import router as rag_router


api_router = APIRouter(prefix="/api/v1")
api_router.include_router(rag_router, tags=["rag"])
