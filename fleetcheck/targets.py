"""
Target descriptors: named, connectable endpoints a catalog runs against.

Targets come from the command line (`--target name=dsn`) or a YAML/JSON file:

    targets:
      - name: prod-eu
        dsn: /data/prod_eu.duckdb
      - name: prod-us
        dsn: /data/prod_us.duckdb
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator


class TargetDescriptor(BaseModel):
    """Display name + connection descriptor. Never persisted by the engine."""

    model_config = ConfigDict(frozen=True)

    name: str
    dsn: str

    @field_validator("name", "dsn")
    @classmethod
    def non_empty(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must be a non-empty string")
        return value

    def __str__(self) -> str:
        return self.name


def parse_target_arg(raw: str) -> TargetDescriptor:
    """Parse `name=dsn`; a bare dsn is named after its file stem."""
    name, sep, dsn = raw.partition("=")
    if not sep:
        dsn = raw
        name = Path(raw).stem or raw
    return TargetDescriptor(name=name, dsn=dsn)


def load_targets(path: str | Path) -> list[TargetDescriptor]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Targets file not found: {path}")
    with open(path, encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or []
    if isinstance(payload, dict):
        payload = payload.get("targets", [])
    if not isinstance(payload, list):
        raise ValueError("targets file must contain a list (or a mapping with 'targets')")

    targets: list[TargetDescriptor] = []
    for idx, entry in enumerate(payload):
        try:
            if isinstance(entry, str):
                targets.append(parse_target_arg(entry))
            else:
                targets.append(TargetDescriptor.model_validate(entry))
        except ValidationError as exc:
            raise ValueError(f"targets[{idx}] is invalid: {exc}") from exc
    return targets
