"""YAML settings loading and validation.

Loads cloudward.yaml files, validates them against the pydantic schema,
and returns EngineSettings. Errors are always actionable.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ValidationError

from cloudward.config.schema import EngineSettings
from cloudward.errors import CloudwardError


class SettingsValidationError(CloudwardError):
    """Raised when a settings YAML file is malformed or fails validation.

    Attributes:
        path: The path to the settings file that failed validation.
        details: Structured error details from pydantic validation.
    """

    def __init__(self, path: Path, details: list[dict[str, Any]], message: str) -> None:
        self.path = path
        self.details = details
        super().__init__(message)


def load_settings(path: Path) -> EngineSettings:
    """Load and validate engine settings from a YAML file.

    An empty file yields the built-in defaults. Sections that are left out
    keep their defaults too.

    Raises:
        FileNotFoundError: If the settings file doesn't exist.
        SettingsValidationError: If the YAML is malformed or fails schema validation.
    """
    raw_data = _read_mapping(path)
    if raw_data is None:
        return EngineSettings()

    try:
        return EngineSettings.model_validate(raw_data)
    except ValidationError as e:
        error_details = e.errors()
        raise SettingsValidationError(
            path=path,
            details=error_details,
            message=f"Settings validation failed for {path}:\n{_summarize(error_details)}",
        ) from e


def _read_mapping(path: Path) -> dict[str, Any] | None:
    if not path.is_file():
        raise FileNotFoundError(
            f"Settings file not found at {path}. "
            f"Create one or omit --config to use the built-in defaults."
        )

    try:
        raw_data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise SettingsValidationError(
            path=path,
            details=[{"type": "yaml_parse_error", "msg": str(e)}],
            message=f"Failed to parse YAML in {path}: {e}",
        ) from e

    if raw_data is None or isinstance(raw_data, dict):
        return raw_data
    raise SettingsValidationError(
        path=path,
        details=[{"type": "not_a_mapping", "got": type(raw_data).__name__}],
        message=(
            f"Settings file {path} must contain a YAML mapping of sections "
            f"({', '.join(_section_keys(None))}), got {type(raw_data).__name__}."
        ),
    )


def _section_keys(section: str | None) -> list[str]:
    """Accepted keys for a cloudward.yaml section (None for the top level)."""
    if section is None:
        return list(EngineSettings.model_fields)
    field = EngineSettings.model_fields.get(section)
    if field is None or not isinstance(field.annotation, type):
        return []
    if not issubclass(field.annotation, BaseModel):
        return []
    return list(field.annotation.model_fields)


def _summarize(error_details: list[dict[str, Any]]) -> str:
    """Render pydantic errors as one line per problem.

    Keys rejected by a section's ``extra="forbid"`` are grouped per section
    and listed next to the keys that section accepts, so a typo like
    ``rule_batch`` points straight at ``rule_batch_size``.
    """
    unknown: dict[str | None, list[str]] = {}
    lines: list[str] = []
    for err in error_details:
        loc = [str(part) for part in err["loc"]]
        if err["type"] == "extra_forbidden" and loc:
            section = loc[0] if len(loc) > 1 else None
            unknown.setdefault(section, []).append(loc[-1])
            continue
        lines.append(f"  - {' → '.join(loc)}: {err['msg']}")

    for section, keys in unknown.items():
        where = f"section '{section}'" if section else "the top level"
        accepted = ", ".join(_section_keys(section)) or "none"
        lines.append(
            f"  - Unknown key(s) in {where}: {', '.join(keys)} (accepted: {accepted})"
        )
    return "\n".join(lines)
