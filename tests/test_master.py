from __future__ import annotations

import asyncio

import pytest

from conftest import FAST, make_definition, simulated_handle
from supmcu.core.config import EngineConfig
from supmcu.core.definition_file import load_definitions, save_definitions
from supmcu.core.errors import (
    CommandError,
    FanOutTaskError,
    ModuleNotFound,
    TransportConnectError,
    UnknownTelemetryName,
)
from supmcu.core.master import SupMCUMaster
from supmcu.core.model import TelemetryKind
from supmcu.transports.simulated import SimulatedModule

NAMES = [("EPS", 0x52), ("BM2", 0x2A), ("GPS", 0x51), ("RHM", 0x1C), ("DASA", 0x30)]


def build_master(*, known: bool = False, fail: str | None = None, config: EngineConfig = FAST):
    modules, sims = [], {}
    for name, address in NAMES:
        module, sim = simulated_handle(
            make_definition(name, address),
            known=known,
            config=config,
            fail_writes=name == fail,
        )
        modules.append(module)
        sims[name] = sim
    return SupMCUMaster(modules, config=config), sims


def test_discover_modules_fills_every_definition() -> None:
    master, _ = build_master()
    master.discover_modules()
    assert [d.name for d in master.get_definitions()] == [name for name, _ in NAMES]


def test_discover_failure_is_raised_after_others_finish() -> None:
    master, _ = build_master(fail="GPS")
    with pytest.raises(CommandError):
        master.discover_modules()

    definitions = master.get_definitions()
    assert definitions[2].name == ""
    for definition, (name, _) in zip(definitions, NAMES):
        if name != "GPS":
            assert definition.name == name
            assert len(definition.telemetry) == 5


def test_get_all_telemetry_keeps_catalog_order() -> None:
    master, sims = build_master(known=True)
    outcomes = master.get_all_telemetry()

    assert len(outcomes) == len(NAMES)
    for outcome, (name, _) in zip(outcomes, NAMES):
        assert outcome[f"{name} Temp"] == sims[name].values_for(TelemetryKind.MODULE, 0)


def test_failing_module_gets_error_text_per_item() -> None:
    master, _ = build_master(known=True, fail="BM2")
    outcomes = master.get_all_telemetry()

    assert all("Failed sending command" in str(v[0]) for v in outcomes[1].values())
    assert "Failed sending command" not in str(outcomes[0]["Status"][0])


def test_for_each_returns_in_catalog_order_regardless_of_finish_order() -> None:
    master, _ = build_master()

    async def op(module):
        await asyncio.sleep(0.001 * (0x60 - module.address))
        return module.address

    assert master.for_each(op) == [address for _, address in NAMES]


def test_for_each_bounds_concurrency() -> None:
    config = EngineConfig(response_delay=0, retry_increment=0, concurrency=2)
    master, _ = build_master(config=config)
    in_flight = 0
    peak = 0

    async def op(module):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.001)
        in_flight -= 1
        return module.address

    master.for_each(op)
    assert peak == 2


def test_for_each_returns_protocol_errors_in_slot() -> None:
    master, _ = build_master()

    async def op(module):
        if module.address == 0x51:
            raise ModuleNotFound(None, module.address)
        return module.address

    outcomes = master.for_each(op)
    assert isinstance(outcomes[2], ModuleNotFound)
    assert outcomes[0] == 0x52


def test_task_failure_aborts_by_default() -> None:
    master, _ = build_master()

    async def op(module):
        if module.address == 0x2A:
            raise RuntimeError("boom")
        return module.address

    with pytest.raises(RuntimeError):
        master.for_each(op)


def test_task_failure_can_be_collected() -> None:
    config = EngineConfig(response_delay=0, retry_increment=0, abort_on_task_error=False)
    master, _ = build_master(config=config)

    async def op(module):
        if module.address == 0x2A:
            raise RuntimeError("boom")
        return module.address

    outcomes = master.for_each(op)
    assert isinstance(outcomes[1], FanOutTaskError)
    assert isinstance(outcomes[1].cause, RuntimeError)
    assert outcomes[3] == 0x1C


def test_find_module_by_address_or_name() -> None:
    master, _ = build_master(known=True)
    assert master.find_module(0x52) is master.modules[0]
    assert master.find_module("BM2") is master.modules[1]
    assert master.with_module("GPS", lambda m: m.address) == 0x51
    with pytest.raises(ModuleNotFound):
        master.find_module(0x10)
    with pytest.raises(ModuleNotFound):
        master.find_module("XYZ")


def test_send_command_routes_to_module() -> None:
    master, sims = build_master(known=True)
    master.send_command("RHM", "RHM:LED ON")
    assert sims["RHM"].writes == ["RHM:LED ON"]
    assert sims["EPS"].writes == []


def test_get_telemetry_by_names_across_modules() -> None:
    master, sims = build_master(known=True)
    outcomes = master.get_telemetry_by_names(["EPS Temp", "BM2 Temp"])

    assert list(outcomes[0]) == ["EPS Temp"]
    assert list(outcomes[1]) == ["BM2 Temp"]
    assert outcomes[2] == {}
    assert sims["GPS"].writes == []


def test_get_telemetry_by_names_unknown_name() -> None:
    master, _ = build_master(known=True)
    with pytest.raises(UnknownTelemetryName):
        master.get_telemetry_by_names(["EPS Temp", "missing"])


def test_discover_module_by_name_after_load(tmp_path) -> None:
    master, _ = build_master()
    path = tmp_path / "defs.json"
    save_definitions(path, [make_definition(name, address) for name, address in NAMES])
    master.load_def_file(path)
    definition = master.discover_module("DASA")
    assert definition.telemetry[0].name == "firmware_version"


def test_from_file_and_set_response_delay_resaves(tmp_path) -> None:
    truths = {address: make_definition(name, address) for name, address in NAMES}
    path = tmp_path / "defs.json"
    save_definitions(path, list(truths.values()))

    master = SupMCUMaster.from_file(
        "/dev/i2c-test",
        path,
        config=FAST,
        transport_factory=lambda device, address: SimulatedModule(truths[address]),
    )
    assert [m.address for m in master.modules] == [address for _, address in NAMES]

    master.set_response_delay(0x2A, 0.25)
    assert master.modules[1].response_delay == 0.25
    assert load_definitions(path)[1].response_delay == 0.25

    master.close()
    assert all(m.transport.closed for m in master.modules)


def test_open_uses_scan_when_no_addresses(monkeypatch: pytest.MonkeyPatch) -> None:
    from supmcu.core import master as master_mod

    scanned = {}

    def fake_scan(device, blacklist=None):
        scanned["args"] = (device, list(blacklist or ()))
        return [0x52, 0x2A]

    monkeypatch.setattr(master_mod, "scan_bus", fake_scan)
    truths = {address: make_definition(name, address) for name, address in NAMES}
    master = SupMCUMaster.open(
        "/dev/i2c-test",
        blacklist=[0x10],
        config=FAST,
        transport_factory=lambda device, address: SimulatedModule(truths[address]),
    )

    assert scanned["args"] == ("/dev/i2c-test", [0x10])
    assert [m.address for m in master.modules] == [0x52, 0x2A]
    master.discover_modules()
    assert [d.name for d in master.get_definitions()] == ["EPS", "BM2"]


def test_save_def_file_writes_yaml_by_suffix(tmp_path) -> None:
    master, _ = build_master(known=True)
    path = tmp_path / "defs.yaml"
    master.save_def_file(path)
    assert path.read_text(encoding="utf-8").startswith("- name: EPS")
    assert [d.name for d in load_definitions(path)] == [name for name, _ in NAMES]


class FailingFactory:
    def __init__(self, fail_at: int) -> None:
        self.fail_at = fail_at
        self.opened: list[SimulatedModule] = []

    def __call__(self, device, address):
        if address == self.fail_at:
            raise TransportConnectError(f"Could not select address {address:#04x} on {device}")
        sim = SimulatedModule(make_definition("EPS", address))
        self.opened.append(sim)
        return sim


def test_open_closes_earlier_transports_when_one_fails() -> None:
    factory = FailingFactory(fail_at=0x51)
    with pytest.raises(TransportConnectError):
        SupMCUMaster.open(
            "/dev/i2c-test",
            [0x52, 0x2A, 0x51, 0x1C],
            config=FAST,
            transport_factory=factory,
        )
    assert len(factory.opened) == 2
    assert all(sim.closed for sim in factory.opened)


def test_from_file_closes_earlier_transports_when_one_fails(tmp_path) -> None:
    path = tmp_path / "defs.json"
    save_definitions(path, [make_definition(name, address) for name, address in NAMES])
    factory = FailingFactory(fail_at=0x30)
    with pytest.raises(TransportConnectError):
        SupMCUMaster.from_file("/dev/i2c-test", path, config=FAST, transport_factory=factory)
    assert len(factory.opened) == 4
    assert all(sim.closed for sim in factory.opened)
