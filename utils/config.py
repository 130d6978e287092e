# utils/config.py
import os
from pathlib import Path
import yaml
from dotenv import load_dotenv

from utils.logger import logger


def resolve_env(obj, missing: list | None = None):
    """Replace "${VAR}" string leaves with the value of the environment variable (or "")."""
    if isinstance(obj, dict):
        return {k: resolve_env(v, missing) for k, v in obj.items()}
    if isinstance(obj, list):
        return [resolve_env(v, missing) for v in obj]
    if isinstance(obj, str) and obj.startswith("${") and obj.endswith("}"):
        varname = obj[2:-1]
        value = os.getenv(varname)
        if value is None:
            if missing is not None:
                missing.append(varname)
            return ""
        return value
    return obj


def load_cfg(cfg_path: str | None = None, *, env_file: str | None = None):

    base_dir = Path(__file__).resolve().parents[1]

    cfg_file = Path(cfg_path) if cfg_path else (base_dir / "configs" / "fulfillment_config.yaml")
    dotenv_file = Path(env_file) if env_file else (base_dir / ".env")

    if not load_dotenv(dotenv_file):
        logger.debug(f"No environment file loaded from {dotenv_file}")

    with open(cfg_file, "r", encoding="utf-8") as f:
        raw_cfg = yaml.safe_load(f) or {}

    missing: list[str] = []
    cfg = resolve_env(raw_cfg, missing)

    if missing:
        logger.warning(f"⚠️ Unset environment variables in {cfg_file.name}: {', '.join(sorted(set(missing)))}")
    logger.info(f"Loaded config from {cfg_file}")

    return cfg
