"""Runtime settings for the IntuneWin library and CLI.

Values come from environment variables so tools wrapping the library can
tune them without code changes:

- ``INTUNEWIN_CHUNK_SIZE``: bytes per read/hash/cipher step (default 2 MiB)
- ``INTUNEWIN_LOG_LEVEL``: logging level name for the CLI (default INFO)
- ``INTUNEWIN_TOOL_VERSION``: ToolVersion written into new containers
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from intunewin.core.hashing import CHUNK_SIZE
from intunewin.core.models import TOOL_VERSION


@dataclass(frozen=True)
class Settings:
    chunk_size: int = CHUNK_SIZE
    log_level: str = "INFO"
    tool_version: str = TOOL_VERSION

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level)


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from ``environ`` (defaults to ``os.environ``).

    Raises ValueError for a non-positive chunk size or an unknown log level.
    """
    env = os.environ if environ is None else environ

    chunk_size = CHUNK_SIZE
    raw_chunk = env.get("INTUNEWIN_CHUNK_SIZE")
    if raw_chunk:
        chunk_size = int(raw_chunk)
        if chunk_size <= 0:
            raise ValueError(f"INTUNEWIN_CHUNK_SIZE must be positive, got {chunk_size}")

    log_level = (env.get("INTUNEWIN_LOG_LEVEL") or "INFO").upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ValueError(f"Unknown INTUNEWIN_LOG_LEVEL: {log_level}")

    tool_version = env.get("INTUNEWIN_TOOL_VERSION") or TOOL_VERSION

    return Settings(chunk_size=chunk_size, log_level=log_level, tool_version=tool_version)
