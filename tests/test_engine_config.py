from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

import pytest

from aauth.runtime.engine_config import (
    default_engine_config,
    engine_config_from_obj,
    load_engine_config,
    read_engine_config_file,
    validate_engine_config,
)


def test_defaults_are_valid_dev_config() -> None:
    cfg = default_engine_config()
    validate_engine_config(cfg)
    assert cfg.mode == "dev"
    assert cfg.db_path == ""
    assert cfg.rent_policy().minimum_balance(0) == 128 * 6960


def test_config_file_overrides_defaults(tmp_path: Path) -> None:
    p = tmp_path / "aauth.json"
    p.write_text(
        json.dumps({"mode": "PROD", "db_path": str(tmp_path / "db.sqlite"), "rent_per_byte": 1, "api_port": "9000"}),
        encoding="utf-8",
    )
    cfg = read_engine_config_file(str(p))
    assert cfg.mode == "prod"
    assert cfg.rent_per_byte == 1
    assert cfg.rent_base == 128
    assert cfg.api_port == 9000


@pytest.mark.parametrize(
    "override, fragment",
    [
        ({"mode": "mainnet"}, "mode must be one of"),
        ({"rent_per_byte": -1}, "rent_base and rent_per_byte"),
        ({"max_record_bytes": 10}, "max_record_bytes"),
        ({"payer": "  "}, "payer"),
        ({"api_port": 70000}, "api_port"),
        ({"mode": "prod"}, "db_path is required"),
        ({"oidc_keys_path": "/nonexistent/keys.yaml"}, "oidc_keys_path"),
    ],
)
def test_invalid_config_fails_fast(override: dict, fragment: str) -> None:
    with pytest.raises(ValueError, match=fragment):
        validate_engine_config(replace(default_engine_config(), **override))


def test_non_object_config_is_rejected() -> None:
    with pytest.raises(ValueError):
        engine_config_from_obj(["mode", "dev"])


def test_load_reads_env_path_and_log_level(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("AAUTH_CONFIG_PATH", raising=False)
    monkeypatch.setenv("AAUTH_LOG_LEVEL", "debug")
    assert load_engine_config().log_level == "DEBUG"

    p = tmp_path / "aauth.json"
    p.write_text(json.dumps({"payer": "treasury"}), encoding="utf-8")
    monkeypatch.setenv("AAUTH_CONFIG_PATH", str(p))
    assert load_engine_config().payer == "treasury"

    # explicit path wins over env
    q = tmp_path / "other.json"
    q.write_text(json.dumps({"payer": "ops"}), encoding="utf-8")
    assert load_engine_config(config_path=str(q)).payer == "ops"
