from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from dexmanager.domain.models import ServiceConfig

logger = logging.getLogger(__name__)

DATA_ROOT_ENV_VAR = "DEXMANAGER_DATA_DIR"

# Resolve repository root (project root, not the Python package root)
_REPO_ROOT = Path(__file__).resolve().parents[2]
_DEFAULT_DATA_DIR = _REPO_ROOT / "data"

CONFIG_FILE_NAME = "dexmanager.json"


def resolve_data_dir() -> Path:
    """
    Determine the data directory path.

    Priority:
    1. Environment variable DEXMANAGER_DATA_DIR
    2. '<project root>/data'
    """
    env_path = os.environ.get(DATA_ROOT_ENV_VAR)
    if env_path:
        data_dir = Path(env_path).expanduser()
    else:
        data_dir = _DEFAULT_DATA_DIR
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def load_service_config(data_dir: Path) -> ServiceConfig:
    """
    Load dexmanager.json, merging with defaults for any missing fields,
    and write it back so any new fields are persisted.
    """
    path = data_dir / CONFIG_FILE_NAME
    if path.exists():
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            config = ServiceConfig(**raw)
        except Exception as e:
            # If parsing fails, fall back to defaults and overwrite file.
            logger.warning(f"Invalid configuration in {path}, using defaults: {e}")
            config = ServiceConfig()
    else:
        config = ServiceConfig()

    path.write_text(config.model_dump_json(indent=2), encoding="utf-8")
    return config
