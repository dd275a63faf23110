"""Engine configuration shared by module handles and the catalog."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from typing import Any

from supmcu.core.errors import ConfigError

DEFAULT_RESPONSE_DELAY = 0.05
RETRY_TIME_INCREMENT = 0.1
DEFAULT_CONCURRENCY = 4
ENV_PREFIX = "SUPMCU_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class EngineConfig:
    response_delay: float = DEFAULT_RESPONSE_DELAY
    retry_increment: float = RETRY_TIME_INCREMENT
    checksum: bool = False
    concurrency: int = DEFAULT_CONCURRENCY
    abort_on_task_error: bool = True
    discover_mcu: bool = False

    def __post_init__(self) -> None:
        if self.response_delay < 0:
            raise ConfigError(f"response_delay must be >= 0, got {self.response_delay}")
        if self.retry_increment < 0:
            raise ConfigError(f"retry_increment must be >= 0, got {self.retry_increment}")
        if self.concurrency < 1:
            raise ConfigError(f"concurrency must be >= 1, got {self.concurrency}")

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        base: EngineConfig | None = None,
    ) -> EngineConfig:
        """Build a config from ``SUPMCU_<FIELD>`` environment variables.

        Variables that are not set keep the value from ``base`` (or the defaults).
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for field in fields(cls):
            raw = env.get(ENV_PREFIX + field.name.upper())
            if raw is None:
                continue
            overrides[field.name] = _coerce(field.name, field.type, raw)
        return replace(base or cls(), **overrides)


def _coerce(name: str, annotation: Any, raw: str) -> Any:
    kind = annotation if isinstance(annotation, str) else getattr(annotation, "__name__", "")
    value = raw.strip()
    if kind == "bool":
        lowered = value.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ConfigError(f"{ENV_PREFIX}{name.upper()} must be boolean, got '{raw}'")
    try:
        if kind == "int":
            return int(value)
        return float(value)
    except ValueError as exc:
        raise ConfigError(f"{ENV_PREFIX}{name.upper()} must be numeric, got '{raw}'") from exc
