"""
Brief: Tests for the pydantic configuration models and variable expansion.

Inputs:
  - None

Outputs:
  - None
"""

from __future__ import annotations

import pytest

from servicefinder.config.config_schema import (
    DEFAULT_SERVICE_TYPE,
    AppConfig,
    FinderConfig,
    coerce_finder_config,
    validate_config,
)


def test_finder_config_defaults() -> None:
    """Brief: Defaults match the documented finder behaviour.

    Inputs:
      - None.

    Outputs:
      - None; asserts every default field value.
    """

    cfg = FinderConfig()
    assert cfg.service_type == DEFAULT_SERVICE_TYPE
    assert cfg.expire_records is True
    assert cfg.debounce_ms == 25
    assert cfg.no_services_timeout_s == 10.0
    assert cfg.browse_interval_s == 0.0
    assert cfg.mdns_address == "224.0.0.251"
    assert cfg.mdns_port == 5353


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("_http._tcp.local.", "_http._tcp.local"),
        ("  _ssh._tcp.local ", "_ssh._tcp.local"),
        ("", DEFAULT_SERVICE_TYPE),
        (None, DEFAULT_SERVICE_TYPE),
    ],
)
def test_service_type_is_normalized(raw, expected) -> None:
    """Brief: Whitespace and trailing dots are stripped; empty means default."""

    assert FinderConfig(service_type=raw).service_type == expected


@pytest.mark.parametrize(
    "bad",
    [
        {"mdns_address": "10.0.0.1"},
        {"mdns_address": "ff02::fb"},
        {"mdns_address": "not-an-ip"},
        {"debounce_ms": -1},
        {"mdns_port": 0},
        {"unknown_key": 1},
    ],
)
def test_coerce_rejects_invalid_mappings(bad) -> None:
    """Brief: Invalid finder mappings raise ValueError."""

    with pytest.raises(ValueError):
        coerce_finder_config(bad)


def test_coerce_accepts_none_model_and_mapping() -> None:
    """Brief: coerce_finder_config passes models through and builds from dicts."""

    model = FinderConfig(debounce_ms=5)
    assert coerce_finder_config(model) is model
    assert coerce_finder_config(None) == FinderConfig()
    assert coerce_finder_config({"expire_records": False}).expire_records is False
    with pytest.raises(ValueError):
        coerce_finder_config(["not", "a", "mapping"])


def test_validate_config_expands_variables() -> None:
    """Brief: Whole-string variables keep their type; embedded ones are textual.

    Inputs:
      - None.

    Outputs:
      - None; asserts expanded finder and logging fields.
    """

    cfg = {
        "variables": {"TYPE": "_ipp._tcp.local", "EXPIRE": False, "NAME": "sf"},
        "finder": {"service_type": "${TYPE}", "expire_records": "$EXPIRE"},
        "logging": {"file": "/tmp/${NAME}.log", "level": "${MISSING}"},
    }
    app = validate_config(cfg)
    assert isinstance(app, AppConfig)
    assert app.finder.service_type == "_ipp._tcp.local"
    assert app.finder.expire_records is False
    assert app.logging.file == "/tmp/sf.log"
    assert app.logging.level == "${MISSING}"
    assert "variables" not in cfg


def test_validate_config_reports_path_on_error() -> None:
    """Brief: Validation errors mention the config path."""

    with pytest.raises(ValueError, match="in /etc/sf.yaml"):
        validate_config({"finder": {"mdns_port": 70000}}, config_path="/etc/sf.yaml")


def test_validate_config_rejects_non_mapping_variables() -> None:
    """Brief: A list under 'variables' is an error."""

    with pytest.raises(ValueError, match="variables must be a mapping"):
        validate_config({"variables": [1, 2]})
