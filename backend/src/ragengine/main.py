import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.v1.router import api_router
from .core.lifecycle import lifespan
from .core.logging import setup_logging
from .core.settings import get_settings, settings_diagnostics

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.rag.log_level)
    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    # CORS（最小允许，本地开发）
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router)
    # 启动日志诊断（简要）
    logger.info(f"settings: {settings_diagnostics()}")
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("ragengine.asgi:app", host="0.0.0.0", port=8000, reload=True)
