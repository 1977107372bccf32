from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import ValidationError

APP_NAME = "pocket-ipam"
APP_VERSION = "1.0.0"

ENV_PREFIX = "POCKET_IPAM_"
DATADIR_ENV = f"{ENV_PREFIX}DATADIR"
DB_FILENAME = "pocket_ipam.db"
LOG_FILENAME = "pocket_ipam.log"


def default_data_dir() -> Path:
    return Path.home() / ".pocket-ipam"


def _int_setting(environ: Mapping[str, str], key: str, default: int, minimum: int = 1) -> int:
    raw = environ.get(f"{ENV_PREFIX}{key}")
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValidationError(f"{ENV_PREFIX}{key} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ValidationError(f"{ENV_PREFIX}{key} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    ping_timeout: int = 1
    ping_workers: int = 64
    max_sweep_hosts: int = 4096
    log_level: str = "WARNING"
    iface: Optional[str] = None

    @property
    def db_path(self) -> Path:
        return self.data_dir / DB_FILENAME

    @property
    def log_file(self) -> Path:
        return self.data_dir / LOG_FILENAME

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        datadir = env.get(DATADIR_ENV, "").strip()
        data_dir = Path(datadir).expanduser() if datadir else default_data_dir()
        iface = env.get(f"{ENV_PREFIX}IFACE", "").strip() or None
        return cls(
            data_dir=data_dir,
            ping_timeout=_int_setting(env, "PING_TIMEOUT", 1),
            ping_workers=_int_setting(env, "PING_WORKERS", 64),
            max_sweep_hosts=_int_setting(env, "MAX_SWEEP", 4096),
            log_level=env.get(f"{ENV_PREFIX}LOG_LEVEL", "WARNING").strip().upper() or "WARNING",
            iface=iface,
        )
