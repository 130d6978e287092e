# utils/__init__.py
"""Ambient helpers shared by every package: loguru logger, YAML/.env config, UTC clocks."""

from utils.logger import logger
from utils.config import load_cfg, resolve_env
from utils.time import utc_ms, utc_s

__all__ = ["logger", "load_cfg", "resolve_env", "utc_ms", "utc_s"]
