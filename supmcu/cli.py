"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer

from supmcu.core.config import EngineConfig
from supmcu.core.definition_file import dump_definitions
from supmcu.core.errors import SupMCUError, UnknownTelemetryName
from supmcu.core.master import ModuleSelector, SupMCUMaster
from supmcu.core.model import Telemetry, TelemetryKind
from supmcu.core.module import SupMCUModule
from supmcu.transports.i2c import scan_bus

DEFAULT_DEVICE = "/dev/i2c-1"

app = typer.Typer(help="Discover and query Pumpkin SupMCU modules over I2C")


def parse_hex(text: str) -> int:
    """``"0x52"`` or ``"52"`` -> ``0x52``."""
    try:
        return int(text, 16)
    except ValueError:
        raise typer.BadParameter(f"'{text}' is not a hex address") from None


def parse_module(text: str) -> ModuleSelector:
    try:
        return int(text, 16)
    except ValueError:
        return text


def parse_tlm(text: str) -> int | str:
    try:
        return int(text)
    except ValueError:
        return text


def _build_master(
    device: str,
    *,
    addresses: list[int] | None = None,
    definition_file: Path | None = None,
    blacklist: list[int] | None = None,
) -> SupMCUMaster:
    config = EngineConfig.from_env()
    if definition_file is not None:
        return SupMCUMaster.from_file(device, definition_file, config=config)
    return SupMCUMaster.open(device, addresses, blacklist=blacklist, config=config)


def _device(ctx: typer.Context) -> str:
    return ctx.obj["device"] if ctx.obj else DEFAULT_DEVICE


def _format_values(values: list) -> str:
    return ", ".join(str(v) for v in values)


@app.callback()
def main(
    ctx: typer.Context,
    path: str = typer.Option(DEFAULT_DEVICE, "--path", "-p", help="I2C bus device"),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"device": path}


@app.command("scan")
def scan(
    ctx: typer.Context,
    blacklist: list[str] = typer.Option([], "--blacklist", help="Hex address to skip"),
) -> None:
    """List addresses that answer on the bus."""
    try:
        addresses = scan_bus(_device(ctx), [parse_hex(a) for a in blacklist])
        if not addresses:
            typer.echo("No modules found")
            return
        for address in addresses:
            typer.echo(f"{address:#04x}")
    except SupMCUError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("discover")
def discover_cmd(
    ctx: typer.Context,
    addresses: list[str] = typer.Argument(None, help="Hex addresses; scans the bus when omitted"),
    file: Path | None = typer.Option(None, "--file", "-f", help="Write definitions to FILE"),
    pretty: bool = typer.Option(False, "--pretty", help="Indent JSON output"),
    quiet: bool = typer.Option(
        False, "--quiet", help="Do not print definitions when writing them to --file"
    ),
    blacklist: list[str] = typer.Option([], "--blacklist", help="Hex address to skip when scanning"),
) -> None:
    """Discover module definitions and print or save them."""
    try:
        master = _build_master(
            _device(ctx),
            addresses=[parse_hex(a) for a in addresses] if addresses else None,
            blacklist=[parse_hex(a) for a in blacklist],
        )
        try:
            master.discover_modules()
            if file is not None:
                master.save_def_file(file, pretty=pretty)
            if not (file is not None and quiet):
                typer.echo(dump_definitions(master.get_definitions(), pretty=pretty))
        finally:
            master.close()
    except SupMCUError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def _read_one(module: SupMCUModule, kind: TelemetryKind, value: int | str) -> Telemetry:
    if isinstance(value, int):
        return asyncio.run(module.get_telemetry_by_index(kind, value))
    for definition in module.get_definition().telemetry:
        if definition.name == value and definition.kind is kind:
            return asyncio.run(module.get_telemetry(definition))
    raise UnknownTelemetryName(value)


@app.command("query")
def query(
    ctx: typer.Context,
    definition_file: Path = typer.Option(..., "--definition-file", "-d", help="Definition file"),
    module: str = typer.Option(..., "--module", "-m", help="Hex address or module name"),
    value: str = typer.Option(..., "--value", "-v", help="Telemetry index or name"),
    scope: str = typer.Option("module", "--scope", "-s", help="supmcu or module"),
) -> None:
    """Read one telemetry item from one module."""
    try:
        kind = TelemetryKind.parse(scope)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from None
    try:
        master = _build_master(_device(ctx), definition_file=definition_file)
        try:
            target = master.find_module(parse_module(module))
            telemetry = _read_one(target, kind, parse_tlm(value))
        finally:
            master.close()
        typer.echo(f"{telemetry.definition.name}: {_format_values(telemetry.data)}")
    except SupMCUError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("telemetry")
def telemetry_cmd(
    ctx: typer.Context,
    definition_file: Path = typer.Option(..., "--definition-file", "-d", help="Definition file"),
    name: list[str] = typer.Option([], "--name", help="Only read these items"),
) -> None:
    """Read telemetry from every module in a definition file."""
    try:
        master = _build_master(_device(ctx), definition_file=definition_file)
        try:
            if name:
                outcomes = master.get_telemetry_by_names(name)
            else:
                outcomes = master.get_all_telemetry()
            definitions = master.get_definitions()
        finally:
            master.close()
    except SupMCUError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    failed = False
    for definition, outcome in zip(definitions, outcomes):
        typer.echo(str(definition))
        if isinstance(outcome, SupMCUError):
            typer.echo(f"Error: {definition.name}: {outcome}", err=True)
            failed = True
            continue
        for item, values in outcome.items():
            typer.echo(f"  {item}: {_format_values(values)}")
    if failed:
        raise typer.Exit(code=1)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
