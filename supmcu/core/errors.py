"""Domain-specific errors for supmcu."""

from __future__ import annotations

from typing import Any


class SupMCUError(Exception):
    """Base error for supmcu."""


class ConfigError(SupMCUError):
    """Raised when engine configuration values are invalid."""


class DefinitionFileError(SupMCUError):
    """Raised when a definition file cannot be read, parsed, or validated."""


class TransportError(SupMCUError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when a bus device cannot be opened or addressed."""


class TransportWriteError(TransportError):
    """Raised when writing to a bus endpoint fails."""


class TransportReadError(TransportError):
    """Raised when reading from a bus endpoint fails or comes back short."""


class CommandError(SupMCUError):
    """Raised when a command cannot be sent to a module."""

    def __init__(self, address: int, detail: str) -> None:
        super().__init__(f"Failed sending command over I2C ({address:#04x}) {detail}")
        self.address = address
        self.detail = detail


class TelemetryRequestError(SupMCUError):
    """Raised when a telemetry response cannot be read from a module."""

    def __init__(self, address: int, detail: str) -> None:
        super().__init__(f"Failed reading telemetry over I2C ({address:#04x}) {detail}")
        self.address = address
        self.detail = detail


class NotReadyError(SupMCUError):
    """Raised when a module answers with the ready flag cleared."""

    def __init__(self, address: int, command: str) -> None:
        super().__init__(
            f"module@{address:#04X}: {command} returned a non-ready response. "
            "Try increasing `response_delay`"
        )
        self.address = address
        self.command = command


class ValidationError(SupMCUError):
    """Raised when a response footer does not match the checksum of its contents."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Failed to validate data with checksum (expected {expected:#010x}, got {actual:#010x})"
        )
        self.expected = expected
        self.actual = actual


class CodecError(SupMCUError):
    """Raised when bytes cannot be decoded for the expected format."""


class InvalidBytesError(CodecError):
    """Raised when a payload is truncated or holds malformed text."""


class InvalidFormatCharacterError(CodecError):
    """Raised when a character is not a known format tag."""

    def __init__(self, char: str) -> None:
        super().__init__(f"Invalid format character {char!r}")
        self.char = char


class CommandParsingError(SupMCUError):
    """Raised when command text does not follow the SupMCU command syntax."""


class VersionParsingError(SupMCUError):
    """Raised when a command name cannot be derived from a firmware version string."""

    def __init__(self, version: str) -> None:
        super().__init__(f"Failed to parse command name from version string {version!r}")
        self.version = version


class McuIdParsingError(SupMCUError):
    """Raised for an MCU id with no known MCU type."""

    def __init__(self, mcu_id: int) -> None:
        super().__init__(f"Unknown MCU ID {mcu_id}")
        self.mcu_id = mcu_id


class UnexpectedValueError(SupMCUError):
    """Raised when a metadata response carries a value of the wrong type."""

    def __init__(self, what: str, value: Any) -> None:
        super().__init__(f"Unexpected value for {what}: {value!r}")
        self.what = what
        self.value = value


class MissingDefinitionError(SupMCUError):
    """Raised when an operation needs a module definition that is not available."""

    def __init__(self, address: int | None = None) -> None:
        where = f" for module {address:#04x}" if address is not None else ""
        super().__init__(f"Module definition not found{where}. Have you run discover?")
        self.address = address


class TelemetryIndexError(SupMCUError):
    """Raised when no telemetry item exists at a given kind and index."""

    def __init__(self, kind: Any, idx: int) -> None:
        super().__init__(f"Failed to find {kind} telemetry item at index {idx}")
        self.kind = kind
        self.idx = idx


class ModuleNotFound(SupMCUError):
    """Raised when no module handle matches a lookup by address or name."""

    def __init__(self, name: str | None, address: int | None) -> None:
        parts = []
        if name:
            parts.append(f"name '{name}'")
        if address is not None:
            parts.append(f"address {address:#04x}")
        super().__init__(f"Module not found: {' or '.join(parts) or '<empty selector>'}")
        self.name = name
        self.address = address


class UnknownTelemetryName(SupMCUError):
    """Raised when a telemetry item name is not present in a definition."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown telemetry name '{name}'")
        self.name = name


class FanOutTaskError(SupMCUError):
    """Raised in place of a non-protocol exception from one fan-out unit."""

    def __init__(self, address: int, cause: BaseException) -> None:
        super().__init__(f"module@{address:#04X}: task failed: {cause!r}")
        self.address = address
        self.cause = cause
