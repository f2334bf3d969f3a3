import logging
import os
from dataclasses import dataclass
from typing import Mapping

DEFAULT_INSTANCE_ID = "default"
DEFAULT_SLOW_DELAY_SEC = 20.0

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


@dataclass(frozen=True)
class ServiceSettings:
    instance_id: str = DEFAULT_INSTANCE_ID
    slow_delay_sec: float = DEFAULT_SLOW_DELAY_SEC
    log_level: str = "INFO"


def load_settings(environ: Mapping[str, str] = os.environ) -> ServiceSettings:
    """
    Build the settings for one replica from its environment.

    Read once at startup; the result is frozen and handed to the app.
    """
    raw_delay = environ.get("SLOW_DELAY_SEC", str(DEFAULT_SLOW_DELAY_SEC))
    try:
        slow_delay_sec = float(raw_delay)
    except ValueError:
        raise ValueError(f"SLOW_DELAY_SEC must be a number, got {raw_delay!r}")
    if slow_delay_sec < 0:
        raise ValueError(f"SLOW_DELAY_SEC must not be negative, got {slow_delay_sec}")

    return ServiceSettings(
        instance_id=environ.get("INSTANCE_ID", DEFAULT_INSTANCE_ID),
        slow_delay_sec=slow_delay_sec,
        log_level=environ.get("LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO"):
    logging.basicConfig(format=LOG_FORMAT, level=level)
