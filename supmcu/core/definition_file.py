"""Loading and saving module definition files (JSON, or YAML by suffix)."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError as SchemaValidationError
from jsonschema import validators

from supmcu.core.errors import DefinitionFileError, SupMCUError
from supmcu.core.model import ModuleDefinition, TelemetryKind

YAML_SUFFIXES = (".yaml", ".yml")
LOGGER = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _load_schema_validator() -> Any:
    schema_text = resources.files("supmcu.schemas").joinpath("definition.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _is_yaml(path: Path) -> bool:
    return path.suffix.lower() in YAML_SUFFIXES


def _parse(text: str, source: Path) -> Any:
    if _is_yaml(source):
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise DefinitionFileError(f"Invalid YAML in {source}: {exc}") from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise DefinitionFileError(f"Invalid JSON in {source}: {exc}") from exc


def parse_definitions(doc: Any, source: Path | str = "<memory>") -> list[ModuleDefinition]:
    """Validate a decoded document and build definitions from it."""
    try:
        _load_schema_validator().validate(doc)
    except SchemaValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise DefinitionFileError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    definitions: list[ModuleDefinition] = []
    for entry in doc:
        try:
            definition = ModuleDefinition.from_dict(entry)
        except (KeyError, ValueError, SupMCUError) as exc:
            raise DefinitionFileError(f"Invalid module entry in {source}: {exc}") from exc
        seen: set[tuple[TelemetryKind, int]] = set()
        for item in definition.telemetry:
            if item.format.byte_length() is None and item.length is None:
                raise DefinitionFileError(
                    f"{source}: telemetry item '{item.name}' of {definition.name} "
                    "has a string format but no length"
                )
            key = (item.kind, item.idx)
            if key in seen:
                raise DefinitionFileError(
                    f"{source}: {definition.name} defines {item.kind} telemetry "
                    f"index {item.idx} more than once"
                )
            seen.add(key)
        definitions.append(definition)
    return definitions


def load_definitions(path: Path | str) -> list[ModuleDefinition]:
    source = Path(path)
    try:
        text = source.read_text(encoding="utf-8")
    except OSError as exc:
        raise DefinitionFileError(f"Could not read definition file {source}: {exc}") from exc
    return parse_definitions(_parse(text, source), source)


def dump_definitions(
    definitions: Sequence[ModuleDefinition],
    *,
    pretty: bool = False,
    yaml_format: bool = False,
) -> str:
    doc = [d.to_dict() for d in definitions]
    if yaml_format:
        return yaml.safe_dump(doc, sort_keys=False)
    if pretty:
        return json.dumps(doc, indent=2)
    return json.dumps(doc)


def save_definitions(
    path: Path | str,
    definitions: Sequence[ModuleDefinition],
    *,
    pretty: bool = False,
) -> None:
    target = Path(path)
    text = dump_definitions(definitions, pretty=pretty, yaml_format=_is_yaml(target))
    try:
        target.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise DefinitionFileError(f"Could not write definition file {target}: {exc}") from exc
    LOGGER.debug("saved %d module definitions to %s", len(definitions), target)
