"""Simple .env file reader used for credential lookup."""

from __future__ import annotations

from collections import OrderedDict
from pathlib import Path
from typing import MutableMapping, Optional


def default_env_file() -> Path:
    return Path.cwd() / ".env"


def read_env_file(path: Optional[Path] = None) -> MutableMapping[str, str]:
    """Return key/value pairs from the .env file (order preserved)."""

    env_file = path or default_env_file()
    pairs: MutableMapping[str, str] = OrderedDict()
    if not env_file.exists():
        return pairs
    for raw_line in env_file.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        pairs[key.strip()] = value.strip().strip('"').strip("'")
    return pairs

