"""MemoryConfig: where the graph file lives and how loudly we log.

Sources, highest precedence first:

    MEMORY_FILE_PATH / MEMORY_LOG_LEVEL   # process environment
    .env                                  # KEY=VALUE file in the working directory
    defaults                              # memory.json beside this package, WARNING

A relative MEMORY_FILE_PATH is resolved against the package directory, the
same place the default file lives.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

_DEFAULT_FILENAME = "memory.json"
_DEFAULT_LOG_LEVEL = "WARNING"
_PACKAGE_DIR = Path(__file__).resolve().parent

FILE_PATH_VAR = "MEMORY_FILE_PATH"
LOG_LEVEL_VAR = "MEMORY_LOG_LEVEL"


@dataclass
class MemoryConfig:
    """Resolved runtime configuration."""

    memory_file_path: Path
    log_level: str = _DEFAULT_LOG_LEVEL

    @property
    def log_level_value(self) -> int:
        return logging.getLevelNamesMapping()[self.log_level]


def _load_env(root: Path) -> dict[str, str]:
    """Parse a simple KEY=VALUE .env file (no external dependency)."""
    env_file = root / ".env"
    if not env_file.exists():
        return {}
    env: dict[str, str] = {}
    for line in env_file.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            k, _, v = line.partition("=")
            env[k.strip()] = v.strip().strip('"').strip("'")
    return env


def resolve_memory_path(value: str | None, base_dir: Path = _PACKAGE_DIR) -> Path:
    """Absolute paths pass through; relative ones land in base_dir."""
    if not value:
        return base_dir / _DEFAULT_FILENAME
    path = Path(value).expanduser()
    if path.is_absolute():
        return path
    return base_dir / path


def load_config(
    environ: dict[str, str] | None = None,
    root: Path | str | None = None,
    file_path: str | None = None,
) -> MemoryConfig:
    """Build a MemoryConfig from the environment and an optional .env in root.

    file_path, when given, wins over every other source.
    """
    env = _load_env(Path(root) if root else Path.cwd())
    env.update(os.environ if environ is None else environ)

    level = env.get(LOG_LEVEL_VAR, _DEFAULT_LOG_LEVEL).upper()
    if level not in logging.getLevelNamesMapping():
        msg = f"{LOG_LEVEL_VAR}={level!r} is not a logging level"
        raise ValueError(msg)

    return MemoryConfig(
        memory_file_path=resolve_memory_path(file_path or env.get(FILE_PATH_VAR)),
        log_level=level,
    )
