"""Discovery of an unknown module's telemetry and command catalog.

The templates below describe how the metadata answers themselves are framed;
they are fixed by the SupMCU firmware and never discovered.
"""

from __future__ import annotations

import logging
import re

from supmcu.core.codec import DataType, Format, TelemetryValue
from supmcu.core.errors import (
    CommandParsingError,
    McuIdParsingError,
    UnexpectedValueError,
    VersionParsingError,
)
from supmcu.core.model import (
    CommandDefinition,
    McuType,
    ModuleDefinition,
    TelemetryDefinition,
    TelemetryKind,
)
from supmcu.core.module import SupMCUModule

FIRMWARE_VERSION = TelemetryDefinition(name="Firmware Version", format=Format("S"), length=77, idx=0)
NAME = TelemetryDefinition(name="Name", format=Format("S"), length=33)
FORMAT = TelemetryDefinition(name="Format", format=Format("S"), length=25)
LENGTH = TelemetryDefinition(name="Length", format=Format("s"))
SIMULATABLE = TelemetryDefinition(name="Simulatable", format=Format("s"))
TELEMETRY_AMOUNT = TelemetryDefinition(name="Amount", format=Format("ss"), idx=14)
COMMAND_AMOUNT = TelemetryDefinition(name="Commands", format=Format("s"), idx=17)
COMMAND_NAME = TelemetryDefinition(name="Command Name", format=Format("S"), length=33)
MCU_ID = TelemetryDefinition(name="MCU ID", format=Format("u"), idx=19)

SUFFIX_TEMPLATES: dict[str, TelemetryDefinition] = {
    "NAME": NAME,
    "FORMAT": FORMAT,
    "LENGTH": LENGTH,
    "SIMULATABLE": SIMULATABLE,
}

COMMAND_NAME_ALIASES = {"GPSRM": "GPS", "RHM3": "RHM"}
SIMULATABLE_MARKERS = ("(on STM)", "(on QSM)")
# This module has no command table to walk.
NO_COMMANDS_MODULE = "DCPS"

_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]+")
LOGGER = logging.getLogger(__name__)


def template_for_suffix(suffix: str) -> TelemetryDefinition:
    try:
        return SUFFIX_TEMPLATES[suffix.strip().upper()]
    except KeyError:
        raise CommandParsingError(f"Invalid suffix {suffix}") from None


def normalize_name(name: str) -> str:
    """``"Cell Voltage #1"`` -> ``"cell_voltage_1"``."""
    normalized = _NON_ALNUM_RE.sub("_", name).lower()
    if normalized.endswith("_"):
        normalized = normalized[:-1]
    return normalized


def parse_command_name(version: str) -> str:
    """Take the token before the first space and first hyphen, then apply aliases."""
    name = version.split(" ", 1)[0].split("-", 1)[0]
    if not name:
        raise VersionParsingError(version)
    return COMMAND_NAME_ALIASES.get(name, name)


def is_simulatable_version(version: str) -> bool:
    return any(marker in version for marker in SIMULATABLE_MARKERS)


def _expect(values: list[TelemetryValue], dt: DataType, what: str, position: int = 0) -> str | int:
    if len(values) <= position or values[position].type is not dt:
        found = values[position] if len(values) > position else None
        raise UnexpectedValueError(what, found)
    return values[position].value


async def discover_command_name(module: SupMCUModule) -> None:
    LOGGER.debug("Discovering module command name for address %#04x", module.address)
    version = (await module.get_telemetry(FIRMWARE_VERSION)).data
    text = str(_expect(version, DataType.STR, "firmware version"))
    LOGGER.info("%#04X: %s", module.address, text)
    definition = module.get_definition()
    definition.name = parse_command_name(text)
    definition.simulatable = is_simulatable_version(text)
    LOGGER.debug("CMD Name: %s", definition.name)


async def discover_mcu(module: SupMCUModule) -> None:
    values = (await module.get_telemetry(MCU_ID)).data
    mcu_id = int(_expect(values, DataType.U8, "MCU ID"))
    module.get_definition().mcu = McuType.from_id(mcu_id)


async def discover_telemetry_definition(
    module: SupMCUModule,
    kind: TelemetryKind,
    idx: int,
) -> TelemetryDefinition:
    """Walk one item's metadata: name, format, then length and sim defaults when needed."""
    LOGGER.debug("Discovering %s telemetry item %d", kind, idx)
    definition = TelemetryDefinition(idx=idx, kind=kind)

    name = await module.query(module.telemetry_command(definition, "NAME"), NAME)
    definition.name = normalize_name(str(_expect(name.data, DataType.STR, "telemetry name")))

    fmt = await module.query(module.telemetry_command(definition, "FORMAT"), FORMAT)
    definition.format = Format(str(_expect(fmt.data, DataType.STR, "telemetry format")))

    if definition.format.byte_length() is None:
        LOGGER.debug("Format includes a string. Requesting telemetry length")
        length = await module.query(module.telemetry_command(definition, "LENGTH"), LENGTH)
        definition.length = int(_expect(length.data, DataType.U16, "telemetry length"))

    if module.get_definition().simulatable:
        flag = await module.query(module.telemetry_command(definition, "SIMULATABLE"), SIMULATABLE)
        if _expect(flag.data, DataType.U16, "simulatable flag"):
            LOGGER.debug("Telemetry item is simulatable. Requesting default values.")
            definition.default_sim_value = (await module.get_telemetry(definition)).data
    return definition


async def discover_all_telemetry(module: SupMCUModule) -> None:
    amounts = (await module.get_telemetry(TELEMETRY_AMOUNT)).data
    counts = {
        TelemetryKind.SUPMCU: int(_expect(amounts, DataType.U16, "SupMCU telemetry amount", 0)),
        TelemetryKind.MODULE: int(_expect(amounts, DataType.U16, "module telemetry amount", 1)),
    }
    for kind, count in counts.items():
        LOGGER.debug("Discovering %d %s telemetry definitions for %s", count, kind, module.label)
        for idx in range(count):
            item = await discover_telemetry_definition(module, kind, idx)
            module.get_definition().add_telemetry(item)


async def discover_commands(module: SupMCUModule) -> None:
    LOGGER.debug("Discovering commands for %s", module.label)
    amount = (await module.get_telemetry(COMMAND_AMOUNT)).data
    for idx in range(int(_expect(amount, DataType.U16, "command amount"))):
        name = await module.query(f"SUP:COM? {idx}", COMMAND_NAME)
        module.get_definition().commands.append(
            CommandDefinition(name=str(_expect(name.data, DataType.STR, "command name")), idx=idx)
        )


async def discover(module: SupMCUModule) -> ModuleDefinition:
    """Build a full definition for ``module`` from scratch.

    A fresh definition (keeping the current response delay) is attached to the
    handle before the first request and filled in place, so whatever was learned
    survives a failure part-way through.
    """
    module.definition = ModuleDefinition(
        address=module.address,
        response_delay=module.response_delay,
    )
    await discover_command_name(module)
    if module.config.discover_mcu:
        try:
            await discover_mcu(module)
        except McuIdParsingError as exc:
            LOGGER.warning("%s: %s", module.label, exc)
    await discover_all_telemetry(module)
    if module.get_definition().name != NO_COMMANDS_MODULE:
        await discover_commands(module)
    return module.get_definition()
