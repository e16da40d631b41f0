from __future__ import annotations

import os
from pathlib import Path

from upton.config import ENV_PREFIX


def load_env_file(path: Path | str, override: bool = False) -> dict[str, str]:
    """Load ``UPTON__*`` settings from a .env file into os.environ.

    Other keys in the file are ignored. Returns the keys that were set.
    """
    env_path = Path(path)
    if not env_path.is_file():
        return {}

    loaded: dict[str, str] = {}
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = (part.strip() for part in line.split("=", 1))
        if not key.startswith(ENV_PREFIX):
            continue
        if not override and key in os.environ:
            continue
        value = value.strip("'").strip('"')
        os.environ[key] = value
        loaded[key] = value
    return loaded
