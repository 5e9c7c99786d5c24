from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

"""Config loader.

- Load YAML ``config/import.yml``
- Validate against ``config_schema.json`` (shipped next to this module)
- Apply defaults (report_type=csr_productivity, entry_type=monthly)
"""

__all__ = [
    "SCHEMA_PATH",
    "ConfigError",
    "DatabaseConfig",
    "ImportConfig",
    "load_config",
]

SCHEMA_PATH = Path(__file__).parent / "config_schema.json"


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings from the file; environment variables take precedence."""
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImportConfig:
    source_directory: str
    store_id: str
    profile_id: str
    department_id: str | None = None
    report_type: str = "csr_productivity"
    entry_type: str = "monthly"
    sheet_name: str | None = None  # None = pick by sheet name preference
    totals_patterns: tuple[str, ...] = ()  # empty = report format defaults
    header_fragments: tuple[str, ...] = ()  # empty = report format defaults
    use_standard_mappings: bool = False
    technician_sold_hours_label: str = "closed_hours"
    database: DatabaseConfig = DatabaseConfig()


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing or unreadable, or the data violates it.
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def _check_patterns(patterns: list[str]) -> None:
    for pattern in patterns:
        try:
            re.compile(pattern)
        except re.error as e:
            raise ConfigError(f"invalid totals pattern {pattern!r}: {e}") from e


def load_config(path: Path) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    _validate_config_schema(data)

    totals = data.get("totals_patterns") or []
    _check_patterns(totals)

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    return ImportConfig(
        source_directory=data["source_directory"],
        store_id=data["store_id"],
        profile_id=data["profile_id"],
        department_id=data.get("department_id"),
        report_type=data.get("report_type", "csr_productivity"),
        entry_type=data.get("entry_type", "monthly"),
        sheet_name=data.get("sheet_name"),
        totals_patterns=tuple(totals),
        header_fragments=tuple(f.lower() for f in data.get("header_fragments") or ()),
        use_standard_mappings=bool(data.get("use_standard_mappings", False)),
        technician_sold_hours_label=data.get("technician_sold_hours_label", "closed_hours"),
        database=db,
    )
