"""Runtime settings for procscope."""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

ENV_PREFIX = "PROCSCOPE_"


def _env_float(name: str, default: float | None) -> float | None:
    raw = os.environ.get(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s%s=%r", ENV_PREFIX, name, raw)
        return default


@dataclass(frozen=True)
class Settings:
    """Tunables for polling and the external inspection tools."""

    poll_rate: float = 2.0  # seconds between refreshes when polling
    port_command_timeout: float = 5.0  # seconds before lsof is abandoned
    kill_wait_timeout: float | None = None  # None: signal delivery is success
    lsof_path: str = "lsof"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from PROCSCOPE_* environment variables."""
        defaults = cls()
        return cls(
            poll_rate=_env_float("POLL_RATE", defaults.poll_rate),
            port_command_timeout=_env_float("PORT_TIMEOUT", defaults.port_command_timeout),
            kill_wait_timeout=_env_float("KILL_WAIT", defaults.kill_wait_timeout),
            lsof_path=os.environ.get(ENV_PREFIX + "LSOF") or defaults.lsof_path,
        )


DEFAULT_SETTINGS = Settings()
