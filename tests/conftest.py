from __future__ import annotations

import pytest

from supmcu.core.codec import Format
from supmcu.core.config import EngineConfig
from supmcu.core.model import CommandDefinition, ModuleDefinition, TelemetryDefinition, TelemetryKind
from supmcu.core.module import SupMCUModule
from supmcu.transports.simulated import SimulatedModule

FAST = EngineConfig(response_delay=0, retry_increment=0)


def make_definition(name: str, address: int, *, commands: int = 2) -> ModuleDefinition:
    return ModuleDefinition(
        name=name,
        address=address,
        telemetry=[
            TelemetryDefinition(
                name="Firmware Version", format=Format("S"), length=77, idx=0, kind=TelemetryKind.SUPMCU
            ),
            TelemetryDefinition(name="Cell Voltage #1", format=Format("ff"), idx=1, kind=TelemetryKind.SUPMCU),
            TelemetryDefinition(name=f"{name} Temp", format=Format("n"), idx=0, kind=TelemetryKind.MODULE),
            TelemetryDefinition(name="Status", format=Format("xs"), idx=1, kind=TelemetryKind.MODULE),
            TelemetryDefinition(name="Label", format=Format("S"), length=33, idx=2, kind=TelemetryKind.MODULE),
        ],
        commands=[CommandDefinition(name=f"CMD{i}", idx=i) for i in range(commands)],
        response_delay=0,
    )


def simulated_handle(
    truth: ModuleDefinition,
    *,
    known: bool = False,
    max_retries: int | None = 5,
    config: EngineConfig = FAST,
    **sim_kwargs,
) -> tuple[SupMCUModule, SimulatedModule]:
    sim = SimulatedModule(truth, **sim_kwargs)
    module = SupMCUModule(
        sim,
        truth.address,
        max_retries,
        definition=truth if known else None,
        config=config,
    )
    return module, sim


@pytest.fixture
def eps() -> ModuleDefinition:
    return make_definition("EPS", 0x52)
