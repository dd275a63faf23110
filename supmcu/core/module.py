"""A single SupMCU module handle: command construction, delays, reads, and retries.

Telemetry exchange with a module:

1. Send one command line (``SUP:TEL? 0`` / ``BM2:TEL? 3`` / ``BM2:TEL? 3,FORMAT``)
2. Wait ``response_delay`` seconds while the module prepares the answer
3. Read header + payload + footer, the payload size coming from the item definition
4. If the header's ready flag is clear, resend and wait a little longer each time
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from supmcu.core.codec import FOOTER_SIZE, HEADER_SIZE, TelemetryValue, decode_frame
from supmcu.core.config import EngineConfig
from supmcu.core.errors import (
    CommandError,
    MissingDefinitionError,
    NotReadyError,
    SupMCUError,
    TelemetryRequestError,
    TransportError,
    UnknownTelemetryName,
)
from supmcu.core.model import ModuleDefinition, Telemetry, TelemetryDefinition, TelemetryKind
from supmcu.transports.base import Transport

SUPMCU_PREFIX = "SUP"
DEFAULT_RETRIES = 5
LOGGER = logging.getLogger(__name__)

TelemetryMap = dict[str, list[TelemetryValue]]


def response_size(definition: TelemetryDefinition) -> int:
    return definition.payload_size() + HEADER_SIZE + FOOTER_SIZE


class SupMCUModule:
    """A module reachable at one bus address.

    The handle exclusively owns its transport. ``max_retries=None`` turns off
    retrying of non-ready responses entirely.

    Example::

        module = SupMCUModule(LinuxI2CTransport("/dev/i2c-1", 0x35), 0x35)
        module.send_command("SUP:LED ON")
    """

    def __init__(
        self,
        transport: Transport,
        address: int,
        max_retries: int | None = DEFAULT_RETRIES,
        *,
        definition: ModuleDefinition | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.transport = transport
        self.address = address
        self.max_retries = max_retries
        self.definition = definition
        self.config = config or EngineConfig()
        self.last_cmd = ""
        if definition is not None:
            self.address = definition.address

    def __repr__(self) -> str:
        return (
            f"SupMCUModule(address={self.address:#04x}, response_delay={self.response_delay}, "
            f"max_retries={self.max_retries}, last_cmd={self.last_cmd!r})"
        )

    @property
    def label(self) -> str:
        if self.definition is not None and self.definition.name:
            return f"{self.definition.name}@{self.address:#04X}"
        return f"{self.address:#04X}"

    @property
    def response_delay(self) -> float:
        if self.definition is not None:
            return self.definition.response_delay
        return self.config.response_delay

    def get_definition(self) -> ModuleDefinition:
        if self.definition is None:
            raise MissingDefinitionError(self.address)
        return self.definition

    def set_definition(self, definition: ModuleDefinition) -> None:
        self.address = definition.address
        self.definition = definition

    def matches(self, target: ModuleDefinition | int | str) -> bool:
        """Match by address OR by discovered command name."""
        if isinstance(target, ModuleDefinition):
            return self.matches(target.address) or (bool(target.name) and self.matches(target.name))
        if isinstance(target, int):
            return target == self.address
        return self.definition is not None and bool(target) and self.definition.name == target

    def close(self) -> None:
        self.transport.close()

    def send_command(self, cmd: str) -> None:
        """Send a command line, appending a trailing newline if missing."""
        if not cmd.endswith("\n"):
            cmd += "\n"
        try:
            self.transport.write(cmd.encode("ascii"))
        except TransportError as exc:
            raise CommandError(self.address, str(exc)) from exc
        except UnicodeEncodeError as exc:
            raise CommandError(self.address, f"command is not ASCII: {cmd!r}") from exc
        self.last_cmd = cmd[:-1]
        LOGGER.debug("%s: sent command: `%s`", self.label, self.last_cmd)

    def telemetry_command(self, definition: TelemetryDefinition, suffix: str | None = None) -> str:
        if definition.kind is TelemetryKind.SUPMCU:
            prefix = SUPMCU_PREFIX
        else:
            prefix = self.get_definition().name
        cmd = f"{prefix}:TEL? {definition.idx}"
        return f"{cmd},{suffix}" if suffix else cmd

    def request_telemetry(self, definition: TelemetryDefinition) -> None:
        self.send_command(self.telemetry_command(definition))

    def read_response(self, definition: TelemetryDefinition) -> Telemetry:
        """Read and decode one response framed by ``definition``.

        Raises:
            TelemetryRequestError: If the transport read fails.
            ValidationError: If checksum mode is on and the footer does not match.
            CodecError: If the payload does not decode.
            NotReadyError: If the module cleared its ready flag.
        """
        size = response_size(definition)
        try:
            raw = self.transport.read(size)
        except TransportError as exc:
            raise TelemetryRequestError(self.address, str(exc)) from exc
        LOGGER.debug("%s: received %d bytes: %s", self.label, len(raw), raw.hex())
        header, data = decode_frame(raw, definition.format, checksum=self.config.checksum)
        if not header.ready:
            raise NotReadyError(self.address, self.last_cmd)
        return Telemetry(definition=definition, header=header, data=data)

    async def read_response_safe(self, definition: TelemetryDefinition) -> Telemetry:
        """Read a response, resending ``last_cmd`` on non-ready answers.

        Retry ``n`` (counting from 0) waits ``response_delay + retry_increment * n``.
        The final ``NotReadyError`` is raised once the retry budget is spent.
        """
        try:
            return self.read_response(definition)
        except NotReadyError:
            if self.max_retries is None:
                raise
            LOGGER.debug("%s sent a non-ready response.", self.label)

        last_error: NotReadyError | None = None
        for attempt in range(self.max_retries):
            LOGGER.debug("%s: retry %d of %d", self.label, attempt + 1, self.max_retries)
            self.send_command(self.last_cmd)
            await asyncio.sleep(self.response_delay + self.config.retry_increment * attempt)
            try:
                return self.read_response(definition)
            except NotReadyError as exc:
                LOGGER.debug("%s sent a non-ready response.", self.label)
                last_error = exc
        LOGGER.debug("%s: max retries exceeded", self.label)
        if last_error is None:
            raise NotReadyError(self.address, self.last_cmd)
        raise last_error

    async def delay(self) -> None:
        await asyncio.sleep(self.response_delay)

    async def query(self, cmd: str, template: TelemetryDefinition) -> Telemetry:
        """Send ``cmd``, wait, then read the answer framed by ``template``."""
        self.send_command(cmd)
        await self.delay()
        return await self.read_response_safe(template)

    async def get_telemetry(self, definition: TelemetryDefinition) -> Telemetry:
        self.request_telemetry(definition)
        await self.delay()
        return await self.read_response_safe(definition)

    async def get_telemetry_by_index(self, kind: TelemetryKind, idx: int) -> Telemetry:
        return await self.get_telemetry(self.get_definition().find_telemetry(kind, idx))

    async def get_all_telemetry(self) -> TelemetryMap:
        """Read every item; a failed item maps to its error text instead of aborting."""
        return await self._collect(list(self.get_definition().telemetry))

    async def get_telemetry_by_names(self, names: Iterable[str]) -> TelemetryMap:
        wanted = list(names)
        available = set(self.get_definition().telemetry_names())
        for name in wanted:
            if name not in available:
                raise UnknownTelemetryName(name)
        return await self._collect([d for d in self.get_definition().telemetry if d.name in wanted])

    async def _collect(self, definitions: list[TelemetryDefinition]) -> TelemetryMap:
        telemetry: TelemetryMap = {}
        for definition in definitions:
            try:
                telemetry[definition.name] = (await self.get_telemetry(definition)).data
            except SupMCUError as exc:
                LOGGER.debug("%s: reading '%s' failed: %s", self.label, definition.name, exc)
                telemetry[definition.name] = [TelemetryValue.string(str(exc))]
        return telemetry
