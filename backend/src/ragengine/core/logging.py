import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_configured = False


def setup_logging(level: Optional[str] = None) -> None:
    """配置根日志（只生效一次，之后仅调整级别）"""
    global _configured
    resolved = getattr(logging, (level or "INFO").upper(), logging.INFO)
    if _configured:
        logging.getLogger().setLevel(resolved)
        return
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    # httpx 每个请求都打 INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True
