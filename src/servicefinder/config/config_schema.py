"""Typed configuration for servicefinder.

Brief:
  FinderConfig is the pydantic model for the ``finder`` block of the YAML
  config (or the mapping passed straight to ServiceFinder). validate_config()
  expands ``variables`` and validates the whole document.
"""

from __future__ import annotations

import copy
import ipaddress
import json
import logging
import logging.handlers
import re
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, Field, ValidationError, validator

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_TYPE = "_services._dns-sd._udp.local"

_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")


class FinderConfig(BaseModel):
    """Brief: Typed configuration model for ServiceFinder.

    Inputs:
      - service_type: DNS-SD type to browse (default: all service types).
      - expire_records: bool; when False, TTLs are recorded but instances are
        never removed.
      - debounce_ms: int delay used to coalesce change notifications.
      - no_services_timeout_s: float seconds after which an empty registry
        is reported via NoServicesFoundError (0 disables).
      - browse_interval_s: float seconds between re-broadcasts in the CLI
        (0 disables periodic browsing).
      - mdns_address: IPv4 multicast group for queries.
      - mdns_port: UDP port for queries and the group socket.

    Outputs:
      - FinderConfig instance.
    """

    service_type: str = Field(default=DEFAULT_SERVICE_TYPE)
    expire_records: bool = True
    debounce_ms: int = Field(default=25, ge=0)
    no_services_timeout_s: float = Field(default=10.0, ge=0)
    browse_interval_s: float = Field(default=0.0, ge=0)
    mdns_address: str = Field(default="224.0.0.251")
    mdns_port: int = Field(default=5353, ge=1, le=65535)

    @validator("service_type", pre=True)
    def _normalize_service_type(cls, v):  # type: ignore[no-untyped-def]
        """Brief: Strip whitespace and a trailing dot; empty means the default.

        Example:
          - `_http._tcp.local.` -> `_http._tcp.local`
        """

        s = str(v or "").strip().rstrip(".")
        return s or DEFAULT_SERVICE_TYPE

    @validator("mdns_address")
    def _require_ipv4_multicast(cls, v):  # type: ignore[no-untyped-def]
        try:
            addr = ipaddress.ip_address(str(v).strip())
        except ValueError as exc:
            raise ValueError(f"invalid mdns_address {v!r}") from exc
        if addr.version != 4 or not addr.is_multicast:
            raise ValueError(f"mdns_address {v!r} must be an IPv4 multicast address")
        return str(addr)

    class Config:
        extra = "forbid"


class SyslogConfig(BaseModel):
    """Brief: Syslog destination for log records.

    Inputs:
      - address: Unix socket path or ``[host, port]`` pair.
      - facility: SysLogHandler facility name such as ``user`` or ``local0``.
      - tag: program tag; falls back to ``logging.tag`` when unset.

    Outputs:
      - SyslogConfig instance.
    """

    address: Union[str, Tuple[str, int]] = "/dev/log"
    facility: str = "user"
    tag: Optional[str] = None

    @validator("facility")
    def _known_facility(cls, v):  # type: ignore[no-untyped-def]
        name = str(v).strip().lower()
        if not hasattr(logging.handlers.SysLogHandler, f"LOG_{name.upper()}"):
            raise ValueError(f"unknown syslog facility {v!r}")
        return name

    class Config:
        extra = "forbid"


class LoggingConfig(BaseModel):
    """Brief: Shape of the ``logging`` block consumed by init_logging().

    Inputs:
      - level: debug, info, warn, error or crit; unknown names log at info.
      - stderr: write records to stderr.
      - file: optional log file path (parent directories are created).
      - syslog: False, True (defaults) or a SyslogConfig mapping.
      - tag: program tag used in syslog lines.

    Outputs:
      - LoggingConfig instance.
    """

    level: str = "info"
    stderr: bool = True
    file: Optional[str] = None
    syslog: Union[bool, SyslogConfig] = False
    tag: str = "servicefinder"

    @validator("syslog", pre=True)
    def _syslog_defaults(cls, v):  # type: ignore[no-untyped-def]
        if v is None:
            return False
        if v is True:
            return SyslogConfig()
        return v

    class Config:
        extra = "forbid"


class AppConfig(BaseModel):
    """Brief: Top-level config document: ``finder`` and ``logging`` blocks."""

    finder: FinderConfig = Field(default_factory=FinderConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def coerce_finder_config(config: Any) -> FinderConfig:
    """
    Brief: Accept None, a mapping or a FinderConfig and return a FinderConfig.

    Raises:
      - ValueError: when the mapping fails validation.
    """
    if config is None:
        return FinderConfig()
    if isinstance(config, FinderConfig):
        return config
    if not isinstance(config, dict):
        raise ValueError(f"finder config must be a mapping, got {type(config).__name__}")
    try:
        return FinderConfig(**config)
    except ValidationError as exc:
        raise ValueError(f"invalid finder config: {exc}") from exc


def _expand_variables(cfg: Dict[str, Any]) -> None:
    """Brief: Substitute ``variables`` into the rest of the config, then drop them.

    Inputs:
      - cfg: parsed YAML mapping (mutated in-place).

    Outputs:
      - None.

    Behavior:
      - A string that is exactly `$KEY` or `${KEY}` is replaced by the
        variable's YAML value (int/bool/list keep their type).
      - `${KEY}` inside longer strings is replaced textually.
      - Unknown keys are left as written.
    """

    variables = cfg.pop("variables", None)
    if variables is None:
        return
    if not isinstance(variables, dict):
        raise ValueError("config.variables must be a mapping when present")

    def _expand_string(text: str) -> Any:
        if text.startswith("${") and text.endswith("}") and text[2:-1] in variables:
            return copy.deepcopy(variables[text[2:-1]])
        if text.startswith("$") and text[1:] in variables:
            return copy.deepcopy(variables[text[1:]])

        def _repl(match: "re.Match[str]") -> str:
            k = match.group(1)
            if k not in variables:
                return match.group(0)
            v = variables[k]
            if isinstance(v, bool):
                return "true" if v else "false"
            if isinstance(v, (int, float, str)):
                return str(v)
            return json.dumps(v)

        return _VAR_PATTERN.sub(_repl, text)

    def _expand_obj(obj: Any) -> Any:
        if isinstance(obj, str):
            return _expand_string(obj)
        if isinstance(obj, list):
            return [_expand_obj(item) for item in obj]
        if isinstance(obj, dict):
            return {k: _expand_obj(v) for k, v in obj.items()}
        return obj

    for key in list(cfg.keys()):
        cfg[key] = _expand_obj(cfg[key])


def validate_config(cfg: Dict[str, Any], *, config_path: Optional[str] = None) -> AppConfig:
    """
    Brief: Expand variables and validate a config mapping.

    Inputs:
      - cfg: parsed YAML mapping (mutated: variables are expanded/removed).
      - config_path: optional path used in error messages.

    Outputs:
      - AppConfig: validated, normalized configuration.

    Raises:
      - ValueError: with a readable message when validation fails.
    """
    _expand_variables(cfg)
    try:
        return AppConfig(**cfg)
    except ValidationError as exc:
        where = f" in {config_path}" if config_path else ""
        raise ValueError(f"Invalid configuration{where}:\n{exc}") from exc
