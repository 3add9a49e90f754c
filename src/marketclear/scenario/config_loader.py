"""Load and validate YAML scenario configuration."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from marketclear.core.errors import ConfigurationError
from marketclear.scenario.models import OutputConfig, ScenarioConfig

logger = logging.getLogger(__name__)


def _resolve_path(path_value: Any, base_dir: Path) -> Path | None:
    if not path_value:
        return None
    path = Path(str(path_value))
    if not path.is_absolute():
        path = (base_dir / path).resolve()
    return path


def _warn_unknown_keys(payload: dict[str, Any], allowed: set[str], section: str) -> None:
    unknown = sorted(set(payload) - allowed)
    if unknown:
        logger.warning("Ignoring unrecognized %s keys: %s", section, ", ".join(map(str, unknown)))


def load_scenario_config(config_path: Path | str) -> ScenarioConfig:
    """Read a scenario YAML file.

    Relative output paths are resolved against the directory holding the
    configuration file.

    Raises:
        ConfigurationError: If the file is not valid YAML, is not a mapping
            or fails validation
    """
    config_path = Path(config_path)
    try:
        payload = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Could not parse scenario YAML {config_path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError("Scenario YAML must define a top-level mapping")

    _warn_unknown_keys(payload, set(ScenarioConfig.model_fields), "scenario")

    output_cfg = payload.get("output") or {}
    if not isinstance(output_cfg, dict):
        raise ConfigurationError("output must be a mapping")
    _warn_unknown_keys(output_cfg, set(OutputConfig.model_fields), "output")

    base_dir = config_path.parent
    payload["output"] = {
        "trace_path": _resolve_path(output_cfg.get("trace_path"), base_dir),
        "key_path": _resolve_path(output_cfg.get("key_path"), base_dir),
    }
    payload.setdefault("name", config_path.stem)

    try:
        config = ScenarioConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid scenario configuration in {config_path}:\n{exc}") from exc

    logger.info(
        "Loaded scenario '%s': %d markets, %d curves, %d technologies",
        config.name,
        len(config.markets),
        len(config.curves),
        len(config.technologies),
    )
    return config
