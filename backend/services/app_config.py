"""
Runtime configuration - Environment-driven settings for the backend process
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from pydantic import BaseModel

logger = logging.getLogger(__name__)

ENV_PREFIX = "PROBLEM_COACH_"


class AppConfig(BaseModel):
    """Process configuration (not the user-facing Settings)"""

    data_dir: Path
    store: str = "file"  # "file" or "memory"
    host: str = "127.0.0.1"
    port: int = 8765
    log_level: str = "INFO"
    rescan_timeout: float = 5.0
    provider_timeout: float = 120.0

    @property
    def store_file(self) -> Path:
        return self.data_dir / "store.json"


def resolve_data_dir() -> Path:
    """Pick a writable data directory: env var, then home, then the temp dir"""
    # 1. Environment variable
    candidates: list[Path] = []
    env_dir = os.environ.get(f"{ENV_PREFIX}DATA_DIR")
    if env_dir:
        candidates.append(Path(env_dir))

    # 2. ~/.problem_coach
    candidates.append(Path(os.path.expanduser("~/.problem_coach")))

    for candidate in candidates:
        try:
            candidate.mkdir(parents=True, exist_ok=True)
            return candidate
        except OSError as e:
            logger.warning("[AppConfig] Cannot write to %s: %s", candidate, e)

    # 3. Temp dir when nothing else is writable
    tmp_dir = Path(tempfile.gettempdir()) / "problem_coach"
    tmp_dir.mkdir(parents=True, exist_ok=True)
    logger.warning("[AppConfig] Using temporary data path: %s", tmp_dir)
    return tmp_dir


def load_app_config() -> AppConfig:
    """Build the process configuration from PROBLEM_COACH_* variables"""
    env = os.environ
    store = env.get(f"{ENV_PREFIX}STORE", "file").lower()
    data_dir = resolve_data_dir() if store == "file" else Path(tempfile.gettempdir())
    return AppConfig(
        data_dir=data_dir,
        store=store,
        host=env.get(f"{ENV_PREFIX}HOST", "127.0.0.1"),
        port=int(env.get(f"{ENV_PREFIX}PORT", "8765")),
        log_level=env.get(f"{ENV_PREFIX}LOG_LEVEL", "INFO").upper(),
        rescan_timeout=float(env.get(f"{ENV_PREFIX}RESCAN_TIMEOUT", "5")),
        provider_timeout=float(env.get(f"{ENV_PREFIX}PROVIDER_TIMEOUT", "120")),
    )
