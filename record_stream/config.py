"""Environment-driven defaults shared by the batch processor and the service."""
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from record_stream.chunk_reader import DEFAULT_CHUNK_SIZE

logger = logging.getLogger(__name__)

STRATEGIES = ('marker', 'tokenized')


def _int_env(env: Mapping[str, str], name: str, default: int, minimum: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass
class StreamSettings:
    chunk_size: int = DEFAULT_CHUNK_SIZE
    array_field: Optional[str] = 'items'
    workers: int = 1
    max_in_flight: int = 0
    timeout: Optional[float] = None
    strategy: str = 'marker'
    debug: bool = False

    def __post_init__(self):
        if self.strategy not in STRATEGIES:
            raise ValueError(f"strategy must be one of {STRATEGIES}, got {self.strategy!r}")
        if self.chunk_size < 1:
            raise ValueError(f"chunk size must be >= 1, got {self.chunk_size}")
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")
        if self.max_in_flight < 0:
            raise ValueError(f"max in flight must be >= 0, got {self.max_in_flight}")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.max_in_flight == 0:
            self.max_in_flight = 4 * self.workers

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'StreamSettings':
        """Build settings from ``JSON_*`` variables; unset ones keep defaults.

        ``JSON_ARRAY_FIELD`` set to an empty string selects a bare top-level
        array.
        """
        env = os.environ if env is None else env
        timeout = env.get('JSON_PARSE_TIMEOUT')
        try:
            timeout_value = float(timeout) if timeout else None
        except ValueError:
            raise ValueError(f"JSON_PARSE_TIMEOUT must be a number, got {timeout!r}")
        settings = cls(
            chunk_size=_int_env(env, 'JSON_CHUNK_SIZE', DEFAULT_CHUNK_SIZE, 1),
            array_field=env.get('JSON_ARRAY_FIELD', 'items') or None,
            workers=_int_env(env, 'JSON_DECODE_WORKERS', 1, 1),
            max_in_flight=_int_env(env, 'JSON_MAX_IN_FLIGHT', 0, 0),
            timeout=timeout_value,
            strategy=env.get('JSON_STRATEGY', 'marker'),
            debug=env.get('DEBUG', '').lower() in ('1', 'true', 'yes'),
        )
        logger.debug(f"stream settings: {settings}")
        return settings
