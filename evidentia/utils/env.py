from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv


def load_env_file(path: str | Path | None = None) -> bool:
    """Load `.env` style settings without clobbering variables already exported."""
    target = Path(path) if path is not None else Path(os.getenv("EVIDENTIA_ENV_FILE", ".env"))
    if not target.exists():
        return False
    return load_dotenv(target, override=False)
