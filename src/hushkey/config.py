"""Runtime settings for HushKey.

Values come from environment variables, optionally seeded from a ``.env``
file in the working directory (python-dotenv). Explicit environment
variables always win over ``.env`` entries.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv

DEFAULT_PBKDF2_ITERATIONS = 600_000  # OWASP 2023 for PBKDF2-SHA256
DEFAULT_BACKUP_FREQUENCY_DAYS = 30


@dataclass(frozen=True)
class Settings:
    """Resolved HushKey settings."""

    data_dir: Path = Path("data")
    audit_log_dir: Path = Path("audit_logs")
    backup_frequency_days: int = DEFAULT_BACKUP_FREQUENCY_DAYS
    pbkdf2_iterations: int = DEFAULT_PBKDF2_ITERATIONS
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    @property
    def vault_db_path(self) -> Path:
        return self.data_dir / "vault.db"

    @property
    def backup_history_path(self) -> Path:
        return self.data_dir / "backup_history.db"


def _int_from_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[Path] = None,
) -> Settings:
    """Build Settings from the environment.

    Args:
        env: Mapping to read instead of os.environ (tests pass a dict).
        dotenv_path: Explicit .env file; by default python-dotenv searches
            the working directory. Ignored when `env` is given.
    """
    if env is None:
        load_dotenv(dotenv_path=dotenv_path or find_dotenv(usecwd=True), override=False)
        env = os.environ

    return Settings(
        data_dir=Path(env.get("HUSHKEY_DATA_DIR") or "data"),
        audit_log_dir=Path(env.get("HUSHKEY_AUDIT_LOG_DIR") or "audit_logs"),
        backup_frequency_days=_int_from_env(
            env, "HUSHKEY_BACKUP_FREQUENCY_DAYS", DEFAULT_BACKUP_FREQUENCY_DAYS
        ),
        pbkdf2_iterations=_int_from_env(
            env, "HUSHKEY_PBKDF2_ITERATIONS", DEFAULT_PBKDF2_ITERATIONS
        ),
        api_host=env.get("HUSHKEY_API_HOST") or "127.0.0.1",
        api_port=_int_from_env(env, "HUSHKEY_API_PORT", 8000),
    )
