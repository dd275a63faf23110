"""Core data models used across codec, engine, discovery, and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from supmcu.core.codec import Format, Header, TelemetryValue
from supmcu.core.config import DEFAULT_RESPONSE_DELAY
from supmcu.core.errors import CodecError, McuIdParsingError, TelemetryIndexError


class TelemetryKind(Enum):
    SUPMCU = "SupMCU"
    MODULE = "Module"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, text: str) -> TelemetryKind:
        lowered = text.strip().lower()
        for kind in cls:
            if kind.value.lower() == lowered:
                return kind
        raise ValueError(f"Unknown telemetry kind '{text}'")


class McuType(Enum):
    UNKNOWN = 0
    PIC24EP256MC206 = 1
    PIC24EP512MC206 = 2

    def __str__(self) -> str:
        return self.name

    @classmethod
    def from_id(cls, mcu_id: int) -> McuType:
        if mcu_id == cls.PIC24EP256MC206.value:
            return cls.PIC24EP256MC206
        if mcu_id == cls.PIC24EP512MC206.value:
            return cls.PIC24EP512MC206
        raise McuIdParsingError(mcu_id)


@dataclass
class TelemetryDefinition:
    name: str = ""
    format: Format = field(default_factory=Format)
    length: int | None = None
    default_sim_value: list[TelemetryValue] | None = None
    idx: int = 0
    kind: TelemetryKind = TelemetryKind.SUPMCU

    @property
    def simulatable(self) -> bool:
        return self.default_sim_value is not None

    def payload_size(self) -> int:
        """Bytes of payload in a response to this item.

        Raises:
            CodecError: If the format holds a string and no length is known.
        """
        size = self.format.byte_length()
        if size is not None:
            return size
        if self.length is None:
            raise CodecError(f"Telemetry item '{self.name}' has a string format but no length")
        return self.length

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "format": str(self.format),
            "length": self.length,
            "default_sim_value": (
                [v.to_dict() for v in self.default_sim_value]
                if self.default_sim_value is not None
                else None
            ),
            "idx": self.idx,
            "kind": self.kind.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TelemetryDefinition:
        sim = data.get("default_sim_value")
        return cls(
            name=data["name"],
            format=Format(data["format"]),
            length=data.get("length"),
            default_sim_value=[TelemetryValue.from_dict(v) for v in sim] if sim is not None else None,
            idx=int(data["idx"]),
            kind=TelemetryKind(data["kind"]),
        )


@dataclass(frozen=True)
class CommandDefinition:
    name: str
    idx: int

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "idx": self.idx}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CommandDefinition:
        return cls(name=data["name"], idx=int(data["idx"]))


@dataclass
class ModuleDefinition:
    """Everything known about one module.

    ``name`` is the prefix of every module-scoped command, e.g. ``BM2:TEL? 3``.
    """

    name: str = ""
    address: int = 0
    simulatable: bool = False
    telemetry: list[TelemetryDefinition] = field(default_factory=list)
    commands: list[CommandDefinition] = field(default_factory=list)
    mcu: McuType = McuType.UNKNOWN
    response_delay: float = DEFAULT_RESPONSE_DELAY

    def __str__(self) -> str:
        return f"{self.name} @ {self.address}"

    def supmcu_telemetry(self) -> list[TelemetryDefinition]:
        return self._telemetry_of(TelemetryKind.SUPMCU)

    def module_telemetry(self) -> list[TelemetryDefinition]:
        return self._telemetry_of(TelemetryKind.MODULE)

    def _telemetry_of(self, kind: TelemetryKind) -> list[TelemetryDefinition]:
        return sorted((d for d in self.telemetry if d.kind is kind), key=lambda d: d.idx)

    def find_telemetry(self, kind: TelemetryKind, idx: int) -> TelemetryDefinition:
        for definition in self.telemetry:
            if definition.kind is kind and definition.idx == idx:
                return definition
        raise TelemetryIndexError(kind, idx)

    def telemetry_names(self) -> list[str]:
        return [d.name for d in self.telemetry]

    def add_telemetry(self, definition: TelemetryDefinition) -> None:
        """Append an item, replacing any existing item with the same kind and index."""
        self.telemetry = [
            d for d in self.telemetry if not (d.kind is definition.kind and d.idx == definition.idx)
        ]
        self.telemetry.append(definition)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "address": self.address,
            "simulatable": self.simulatable,
            "telemetry": [d.to_dict() for d in self.telemetry],
            "commands": [c.to_dict() for c in self.commands],
            "mcu": self.mcu.name,
            "response_delay": self.response_delay,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ModuleDefinition:
        return cls(
            name=data["name"],
            address=int(data["address"]),
            simulatable=bool(data.get("simulatable", False)),
            telemetry=[TelemetryDefinition.from_dict(d) for d in data.get("telemetry", [])],
            commands=[CommandDefinition.from_dict(c) for c in data.get("commands", [])],
            mcu=McuType[data.get("mcu", McuType.UNKNOWN.name)],
            response_delay=float(data.get("response_delay", DEFAULT_RESPONSE_DELAY)),
        )


@dataclass(frozen=True)
class Telemetry:
    definition: TelemetryDefinition
    header: Header
    data: list[TelemetryValue]
