# utils/logger.py
from loguru import logger
import os
import re
import sys
from datetime import datetime
from pathlib import Path

# trade tokens and session cookies end up in URLs and error bodies
_SECRET_RE = re.compile(r"(token=|steamLoginSecure=|access_token=)[\w%.\-|]+")


def _redact(record):
    record["message"] = _SECRET_RE.sub(r"\1***", record["message"])


log_dir = Path(os.getenv("KEYFLOW_LOG_DIR", Path(__file__).resolve().parents[1] / "logs"))
log_dir.mkdir(parents=True, exist_ok=True)

start_time = datetime.now().strftime("%Y%m%d_%H%M%S")
log_file = log_dir / f"reconciler_{start_time}.log"

logger.remove()
logger.configure(patcher=_redact)

logger.add(
    sys.stdout,
    level=os.getenv("KEYFLOW_LOG_LEVEL", "INFO"),
    enqueue=True,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | {level} | {message}",
)

logger.add(
    log_file,
    level="DEBUG",
    rotation="100 MB",
    retention="90 days",
    enqueue=True,
    encoding="utf-8",
    format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}",
)

logger.debug(f"Logger initialized. Writing logs to {log_file}")
