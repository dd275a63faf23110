"""A catalog of SupMCU modules on one bus and the fan-out that drives them.

Every catalog-level operation runs one unit of work per module handle on an
asyncio event loop. Bus reads and writes are blocking calls, so only the
response-delay and retry waits of different modules overlap; a semaphore caps
how many units are in flight. Results always come back in catalog order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from pathlib import Path
from typing import TypeVar, Union

from supmcu.core.config import EngineConfig
from supmcu.core.definition_file import load_definitions, save_definitions
from supmcu.core.discovery import discover
from supmcu.core.errors import FanOutTaskError, ModuleNotFound, SupMCUError, UnknownTelemetryName
from supmcu.core.model import ModuleDefinition
from supmcu.core.module import DEFAULT_RETRIES, SupMCUModule, TelemetryMap
from supmcu.transports.base import Transport
from supmcu.transports.i2c import LinuxI2CTransport, scan_bus

T = TypeVar("T")
Outcome = Union[T, SupMCUError]
ModuleSelector = Union[ModuleDefinition, int, str]
TransportFactory = Callable[[str, int], Transport]

LOGGER = logging.getLogger(__name__)


def _selector_parts(target: ModuleSelector) -> tuple[str | None, int | None]:
    if isinstance(target, ModuleDefinition):
        return target.name, target.address
    if isinstance(target, int):
        return None, target
    return target, None


def _open_modules(
    device: str,
    targets: Sequence[tuple[int, ModuleDefinition | None]],
    max_retries: int | None,
    config: EngineConfig,
    transport_factory: TransportFactory,
) -> list[SupMCUModule]:
    """Open one handle per target; on failure close the transports already opened."""
    modules: list[SupMCUModule] = []
    try:
        for address, definition in targets:
            transport = transport_factory(device, address)
            modules.append(
                SupMCUModule(transport, address, max_retries, definition=definition, config=config)
            )
    except BaseException:
        for module in modules:
            module.close()
        raise
    return modules


class SupMCUMaster:
    """Owns the module handles of one bus.

    Example::

        master = SupMCUMaster.open("/dev/i2c-1")
        master.discover_modules()
        for definition in master.get_definitions():
            print(definition)
    """

    def __init__(
        self,
        modules: Sequence[SupMCUModule],
        *,
        definition_file: Path | str | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.modules = list(modules)
        self.definition_file = Path(definition_file) if definition_file is not None else None
        self.config = config or EngineConfig()

    @classmethod
    def open(
        cls,
        device: str,
        addresses: Iterable[int] | None = None,
        *,
        blacklist: Iterable[int] | None = None,
        max_retries: int | None = DEFAULT_RETRIES,
        config: EngineConfig | None = None,
        transport_factory: TransportFactory = LinuxI2CTransport,
    ) -> SupMCUMaster:
        """Open handles for ``addresses``, scanning the bus when none are given."""
        config = config or EngineConfig()
        if addresses is None:
            addresses = scan_bus(device, blacklist)
        modules = _open_modules(
            device,
            [(address, None) for address in addresses],
            max_retries,
            config,
            transport_factory,
        )
        return cls(modules, config=config)

    @classmethod
    def from_file(
        cls,
        device: str,
        path: Path | str,
        *,
        max_retries: int | None = DEFAULT_RETRIES,
        config: EngineConfig | None = None,
        transport_factory: TransportFactory = LinuxI2CTransport,
    ) -> SupMCUMaster:
        """Open one handle per definition stored in ``path``."""
        config = config or EngineConfig()
        modules = _open_modules(
            device,
            [(definition.address, definition) for definition in load_definitions(path)],
            max_retries,
            config,
            transport_factory,
        )
        return cls(modules, definition_file=path, config=config)

    def close(self) -> None:
        for module in self.modules:
            module.close()

    def for_each(self, op: Callable[[SupMCUModule], Awaitable[T]]) -> list[Outcome[T]]:
        """Run ``op`` against every module concurrently and wait for all of them.

        Each slot of the result holds the unit's return value, or the
        ``SupMCUError`` it raised. Any other exception aborts the call once every
        unit has finished, unless ``abort_on_task_error`` is off, in which case it
        is wrapped in ``FanOutTaskError`` and placed in its slot.
        """
        return asyncio.run(self._gather(op))

    async def _gather(self, op: Callable[[SupMCUModule], Awaitable[T]]) -> list[Outcome[T]]:
        semaphore = asyncio.Semaphore(self.config.concurrency)

        async def _unit(module: SupMCUModule) -> T:
            async with semaphore:
                return await op(module)

        results = await asyncio.gather(*(_unit(m) for m in self.modules), return_exceptions=True)
        outcomes: list[Outcome[T]] = []
        for module, result in zip(self.modules, results):
            if isinstance(result, SupMCUError) or not isinstance(result, BaseException):
                outcomes.append(result)
                continue
            if self.config.abort_on_task_error or not isinstance(result, Exception):
                raise result
            LOGGER.error("%s: fan-out unit failed: %r", module.label, result)
            outcomes.append(FanOutTaskError(module.address, result))
        return outcomes

    def discover_modules(self) -> None:
        """Discover every module; raise the first failure after all have finished."""
        LOGGER.info("Discovering modules: %s", [f"{m.address:#04X}" for m in self.modules])
        for outcome in self.for_each(discover):
            if isinstance(outcome, SupMCUError):
                raise outcome

    def discover_module(self, target: ModuleSelector) -> ModuleDefinition:
        module = self.find_module(target)
        return asyncio.run(discover(module))

    def get_definitions(self) -> list[ModuleDefinition]:
        return [module.get_definition() for module in self.modules]

    def get_all_telemetry(self) -> list[Outcome[TelemetryMap]]:
        return self.for_each(lambda module: module.get_all_telemetry())

    def get_telemetry_by_names(self, names: Iterable[str]) -> list[Outcome[TelemetryMap]]:
        """Read the named items from every module that defines any of them.

        Raises:
            UnknownTelemetryName: If a name is not defined by any module.
        """
        wanted = list(names)
        known: set[str] = set()
        for module in self.modules:
            if module.definition is not None:
                known.update(module.definition.telemetry_names())
        for name in wanted:
            if name not in known:
                raise UnknownTelemetryName(name)

        async def _read(module: SupMCUModule) -> TelemetryMap:
            available = set(module.get_definition().telemetry_names())
            return await module.get_telemetry_by_names([n for n in wanted if n in available])

        return self.for_each(_read)

    def find_module(self, target: ModuleSelector) -> SupMCUModule:
        for module in self.modules:
            if module.matches(target):
                return module
        name, address = _selector_parts(target)
        raise ModuleNotFound(name, address)

    def with_module(self, target: ModuleSelector, fn: Callable[[SupMCUModule], T]) -> T:
        return fn(self.find_module(target))

    def with_module_mut(self, target: ModuleSelector, fn: Callable[[SupMCUModule], T]) -> T:
        """Like ``with_module``; ``fn`` may change the handle or its definition."""
        return fn(self.find_module(target))

    def send_command(self, target: ModuleSelector, command: str) -> None:
        self.with_module_mut(target, lambda module: module.send_command(command))

    def set_response_delay(self, target: ModuleSelector, delay: float) -> None:
        """Update one module's response delay, re-saving the loaded definition file."""

        def _update(module: SupMCUModule) -> None:
            module.get_definition().response_delay = delay

        self.with_module_mut(target, _update)
        if self.definition_file is not None:
            self.save_def_file(self.definition_file)

    def load_def_file(self, path: Path | str) -> None:
        """Attach stored definitions to the existing handles, pairing them by position."""
        definitions = load_definitions(path)
        for definition, module in zip(definitions, self.modules):
            module.set_definition(definition)
        if len(definitions) != len(self.modules):
            LOGGER.warning(
                "%s holds %d definitions for %d modules; extra entries were left unpaired",
                path,
                len(definitions),
                len(self.modules),
            )
        self.definition_file = Path(path)

    def save_def_file(self, path: Path | str, *, pretty: bool = False) -> None:
        save_definitions(path, self.get_definitions(), pretty=pretty)
