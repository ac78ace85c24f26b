"""Configuration parsing helpers for servicefinder.

Brief:
  Used by the CLI entrypoint. Centralizes:
    - reading YAML config files
    - merging variables from config/env/CLI
    - validation into typed models (see config_schema)

Inputs:
  - YAML config paths and CLI variable assignments

Outputs:
  - Validated AppConfig instances
"""

from __future__ import annotations

import logging
import os
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional

import yaml

from .config_schema import AppConfig, validate_config

logger = logging.getLogger(__name__)

_VAR_KEY = re.compile(r"[A-Z_][A-Z0-9_]*")

# Only environment entries with this prefix become variables.
ENV_PREFIX = "SERVICEFINDER_"


def _is_var_key(key: str) -> bool:
    """Brief: True when ``key`` is ALL_UPPERCASE and matches [A-Z_][A-Z0-9_]*."""

    return bool(key) and bool(_VAR_KEY.fullmatch(key))


def _parse_yaml_value(text: str) -> Any:
    """Brief: Parse a CLI/environment variable value as YAML, falling back to text."""

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def env_variables(environ: Mapping[str, str]) -> Dict[str, Any]:
    """Brief: ``SERVICEFINDER_<KEY>`` entries as YAML-parsed values keyed by ``KEY``."""

    found: Dict[str, Any] = {}
    for name, raw in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        key = name[len(ENV_PREFIX) :]
        if _is_var_key(key):
            found[key] = _parse_yaml_value(str(raw))
    return found


def cli_variables(assignments: Iterable[str]) -> Dict[str, Any]:
    """Brief: Parse ``-v KEY=YAML`` assignments; only the first ``=`` splits.

    Raises:
      - ValueError: missing ``=`` or a key that is not ALL_UPPERCASE.
    """

    found: Dict[str, Any] = {}
    for assignment in assignments:
        key, sep, raw = assignment.partition("=")
        key = key.strip()
        if not sep:
            raise ValueError(f"-v/--var expects KEY=YAML, got {assignment!r}")
        if not _is_var_key(key):
            raise ValueError(f"variable name {key!r} must match [A-Z_][A-Z0-9_]*")
        found[key] = _parse_yaml_value(raw)
    return found


def parse_config_variables(
    cfg: Dict[str, Any],
    *,
    cli_vars: Optional[List[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Brief: Layer file, environment and CLI variables into cfg['variables'].

    Inputs:
      - cfg: Parsed YAML configuration mapping (mutated in-place).
      - cli_vars: Optional list of CLI `KEY=YAML` assignments.
      - environ: Optional environment mapping (defaults to os.environ).

    Outputs:
      - dict: The merged variables mapping stored back onto cfg['variables'].

    Notes:
      - Later layers win: command line over environment over file. Each
        override is logged at debug level with its origin.

    Example:
      >>> cfg = {'variables': {'TYPE': '_ssh._tcp.local'}}
      >>> parse_config_variables(cfg, cli_vars=['TYPE=_http._tcp.local'], environ={})['TYPE']
      '_http._tcp.local'
    """

    base = cfg.get("variables")
    if base is not None and not isinstance(base, dict):
        raise ValueError("config.variables must be a mapping when present")

    layers = (
        ("config file", base or {}),
        ("environment", env_variables(os.environ if environ is None else environ)),
        ("command line", cli_variables(cli_vars or [])),
    )
    merged: Dict[str, Any] = {}
    for origin, layer in layers:
        for key, value in layer.items():
            if key in merged:
                logger.debug("Variable %s overridden from %s", key, origin)
            merged[key] = value

    cfg["variables"] = merged
    return merged


def load_config(
    config_path: Optional[str] = None,
    *,
    cli_vars: Optional[List[str]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> AppConfig:
    """Brief: Read, variable-merge and validate a YAML config file.

    Inputs:
      - config_path: Path to the YAML file; None validates an empty config so
        defaults (plus any variables) apply.
      - cli_vars: Optional list of CLI `KEY=YAML` assignments.
      - environ: Optional environment mapping.

    Outputs:
      - AppConfig: validated configuration.

    Raises:
      - ValueError: when the file root is not a mapping or validation fails.
      - OSError: when the file cannot be read.
    """

    cfg: Any = {}
    if config_path:
        with open(config_path, "r") as f:
            cfg = yaml.safe_load(f) or {}

    if not isinstance(cfg, dict):
        raise ValueError("Configuration root must be a mapping")

    parse_config_variables(cfg, cli_vars=list(cli_vars or []), environ=environ)
    return validate_config(cfg, config_path=config_path)
