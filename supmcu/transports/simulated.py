"""In-process simulated SupMCU module.

Answers the SupMCU command text protocol from a known ``ModuleDefinition`` so the
engine, discovery, and fan-out can run without hardware.
"""

from __future__ import annotations

import logging
import random
import struct
from collections.abc import Mapping

from supmcu.core.codec import FOOTER_SIZE, HEADER_SIZE, Header, TelemetryValue, encode_frame
from supmcu.core.discovery import (
    COMMAND_AMOUNT,
    FIRMWARE_VERSION,
    MCU_ID,
    TELEMETRY_AMOUNT,
    template_for_suffix,
)
from supmcu.core.errors import (
    CommandParsingError,
    TelemetryIndexError,
    TransportReadError,
    TransportWriteError,
)
from supmcu.core.model import ModuleDefinition, TelemetryDefinition, TelemetryKind
from supmcu.core.module import SUPMCU_PREFIX

LOGGER = logging.getLogger(__name__)

ValueKey = tuple[TelemetryKind, int]


class SimulatedModule:
    """A fake bus endpoint for one module.

    Args:
        definition: The module's true catalog. Item names are answered as-is,
            so they may be un-normalized.
        version: Firmware version string; defaults to ``"{name} something"``.
        values: Fixed values per ``(kind, idx)``; other items get seeded sample values.
        not_ready: Number of upcoming reads that answer with the ready flag cleared.
        always_not_ready: Never set the ready flag.
        checksum: Emit checksum footers instead of zero padding.
        fail_writes: Raise ``TransportWriteError`` on every write.
    """

    def __init__(
        self,
        definition: ModuleDefinition,
        *,
        version: str | None = None,
        values: Mapping[ValueKey, list[TelemetryValue]] | None = None,
        seed: int = 0,
        not_ready: int = 0,
        always_not_ready: bool = False,
        checksum: bool = False,
        fail_writes: bool = False,
    ) -> None:
        self.definition = definition
        self.version = version if version is not None else f"{definition.name} something"
        self.values: dict[ValueKey, list[TelemetryValue]] = dict(values or {})
        self.seed = seed
        self.not_ready = not_ready
        self.always_not_ready = always_not_ready
        self.checksum = checksum
        self.fail_writes = fail_writes
        self.writes: list[str] = []
        self.reads = 0
        self.closed = False
        self._pending: bytes | None = None
        self._timestamp = 0

    def write(self, data: bytes) -> None:
        if self.fail_writes:
            raise TransportWriteError(f"simulated write failure for {self.definition.name}")
        cmd = data.decode("ascii").rstrip("\n")
        self.writes.append(cmd)
        self._pending = self._respond(cmd)

    def read(self, size: int) -> bytes:
        if self._pending is None:
            raise TransportReadError("read without a pending command")
        self.reads += 1
        ready = not self.always_not_ready and self.not_ready <= 0
        if self.not_ready > 0:
            self.not_ready -= 1
        self._timestamp += 1
        header = Header(ready=ready, timestamp=self._timestamp)
        return encode_frame(
            header,
            self._pending,
            max(size - HEADER_SIZE - FOOTER_SIZE, 0),
            checksum=self.checksum,
        )

    def close(self) -> None:
        self.closed = True

    def values_for(self, kind: TelemetryKind, idx: int) -> list[TelemetryValue]:
        """The values this module reports for an ordinary telemetry item."""
        item = self._item(kind, idx)
        if item.default_sim_value is not None:
            return item.default_sim_value
        key = (kind, idx)
        if key not in self.values:
            rng = random.Random(f"{self.seed}:{kind.value}:{idx}")
            self.values[key] = item.format.sample_values(rng)
        return self.values[key]

    def _item(self, kind: TelemetryKind, idx: int) -> TelemetryDefinition:
        return self.definition.find_telemetry(kind, idx)

    def _respond(self, cmd: str) -> bytes:
        prefix, sep, body = cmd.strip().partition(":")
        if not sep:
            raise CommandParsingError(f"Error parsing command {cmd!r}")
        kind = TelemetryKind.SUPMCU if prefix == SUPMCU_PREFIX else TelemetryKind.MODULE
        try:
            if body.startswith("TEL?"):
                target, _, suffix = body[len("TEL?"):].strip().partition(",")
                idx = int(target)
                if suffix:
                    return self._metadata(kind, idx, suffix)
                return self._telemetry(kind, idx)
            if body.startswith("COM?"):
                idx = int(body[len("COM?"):].strip())
                return self._command_name(idx)
        except ValueError as exc:
            raise CommandParsingError(f"Error parsing command {cmd!r}") from exc
        LOGGER.debug("%s: accepted command `%s`", self.definition.name, cmd)
        return b""

    def _metadata(self, kind: TelemetryKind, idx: int, suffix: str) -> bytes:
        template = template_for_suffix(suffix)
        item = self._item(kind, idx)
        if template.name == "Name":
            return item.name.encode("utf-8") + b"\x00"
        if template.name == "Format":
            return str(item.format).encode("ascii") + b"\x00"
        if template.name == "Length":
            return struct.pack("<H", item.length or 0)
        return struct.pack("<H", 1 if item.simulatable else 0)

    def _telemetry(self, kind: TelemetryKind, idx: int) -> bytes:
        if kind is TelemetryKind.SUPMCU:
            if idx == FIRMWARE_VERSION.idx:
                return self.version.encode("utf-8") + b"\x00"
            if idx == TELEMETRY_AMOUNT.idx:
                return struct.pack(
                    "<HH",
                    len(self.definition.supmcu_telemetry()),
                    len(self.definition.module_telemetry()),
                )
            if idx == COMMAND_AMOUNT.idx:
                return struct.pack("<H", len(self.definition.commands))
            if idx == MCU_ID.idx:
                return struct.pack("<B", self.definition.mcu.value)
        item = self._item(kind, idx)
        return item.format.encode(self.values_for(kind, idx))

    def _command_name(self, idx: int) -> bytes:
        for command in self.definition.commands:
            if command.idx == idx:
                return command.name.encode("utf-8") + b"\x00"
        raise TelemetryIndexError("command", idx)
