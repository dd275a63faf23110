"""Stable public API for building tooling on top of supmcu.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from pathlib import Path

from supmcu.core.codec import DataType, Format, Header, TelemetryValue
from supmcu.core.config import EngineConfig
from supmcu.core.definition_file import dump_definitions, load_definitions, save_definitions
from supmcu.core.discovery import discover, normalize_name, parse_command_name
from supmcu.core.errors import (
    CodecError,
    CommandError,
    ConfigError,
    DefinitionFileError,
    FanOutTaskError,
    InvalidBytesError,
    McuIdParsingError,
    MissingDefinitionError,
    ModuleNotFound,
    NotReadyError,
    SupMCUError,
    TelemetryIndexError,
    TelemetryRequestError,
    TransportConnectError,
    TransportError,
    TransportReadError,
    TransportWriteError,
    UnexpectedValueError,
    UnknownTelemetryName,
    ValidationError,
    VersionParsingError,
)
from supmcu.core.master import SupMCUMaster, TransportFactory
from supmcu.core.model import (
    CommandDefinition,
    McuType,
    ModuleDefinition,
    Telemetry,
    TelemetryDefinition,
    TelemetryKind,
)
from supmcu.core.module import DEFAULT_RETRIES, SupMCUModule
from supmcu.transports.base import Transport
from supmcu.transports.i2c import LinuxI2CTransport, scan_bus
from supmcu.transports.simulated import SimulatedModule

__all__ = [
    "CodecError",
    "CommandError",
    "ConfigError",
    "DefinitionFileError",
    "FanOutTaskError",
    "InvalidBytesError",
    "McuIdParsingError",
    "MissingDefinitionError",
    "ModuleNotFound",
    "NotReadyError",
    "SupMCUError",
    "TelemetryIndexError",
    "TelemetryRequestError",
    "TransportConnectError",
    "TransportError",
    "TransportReadError",
    "TransportWriteError",
    "UnexpectedValueError",
    "UnknownTelemetryName",
    "ValidationError",
    "VersionParsingError",
    "CommandDefinition",
    "DataType",
    "EngineConfig",
    "Format",
    "Header",
    "McuType",
    "ModuleDefinition",
    "Telemetry",
    "TelemetryDefinition",
    "TelemetryKind",
    "TelemetryValue",
    "DEFAULT_RETRIES",
    "LinuxI2CTransport",
    "SupMCUMaster",
    "SimulatedModule",
    "SupMCUModule",
    "Transport",
    "discover",
    "dump_definitions",
    "load_definitions",
    "normalize_name",
    "open_bus",
    "parse_command_name",
    "save_definitions",
    "scan_bus",
]


def open_bus(
    device: str,
    *,
    addresses: list[int] | None = None,
    definition_file: Path | str | None = None,
    blacklist: list[int] | None = None,
    max_retries: int | None = DEFAULT_RETRIES,
    config: EngineConfig | None = None,
    transport_factory: TransportFactory = LinuxI2CTransport,
) -> SupMCUMaster:
    """Open a catalog for ``device``.

    With ``definition_file`` the handles come from the stored definitions;
    otherwise ``addresses`` are used, or the bus is scanned when none are given.
    Configuration defaults come from ``SUPMCU_*`` environment variables.
    """
    config = config or EngineConfig.from_env()
    if definition_file is not None:
        return SupMCUMaster.from_file(
            device,
            definition_file,
            max_retries=max_retries,
            config=config,
            transport_factory=transport_factory,
        )
    return SupMCUMaster.open(
        device,
        addresses,
        blacklist=blacklist,
        max_retries=max_retries,
        config=config,
        transport_factory=transport_factory,
    )
