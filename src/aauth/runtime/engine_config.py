# src/aauth/runtime/engine_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

from aauth.ledger.record_store import DEFAULT_MAX_RECORD_BYTES, RentPolicy

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    return str(v).strip()


@dataclass(frozen=True)
class EngineConfig:
    mode: str  # "dev" | "testnet" | "prod"

    # SQLite file for records; empty keeps everything in memory.
    db_path: str

    # deposit = (rent_base + size) * rent_per_byte
    rent_base: int
    rent_per_byte: int
    max_record_bytes: int

    # YAML file replacing the built-in OIDC provider keys.
    oidc_keys_path: str

    # Account that pays deposits for records the engine creates.
    payer: str

    api_host: str
    api_port: int

    log_level: str

    def rent_policy(self) -> RentPolicy:
        return RentPolicy(per_byte=self.rent_per_byte, overhead_bytes=self.rent_base)


_ALLOWED_MODES = {"dev", "testnet", "prod"}


def validate_engine_config(cfg: EngineConfig) -> None:
    """Fail-fast validation for operator config."""

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    if int(cfg.rent_base) < 0 or int(cfg.rent_per_byte) < 0:
        raise ValueError("rent_base and rent_per_byte must be >= 0")

    if int(cfg.max_record_bytes) < 64:
        raise ValueError(f"max_record_bytes must be >= 64; got: {cfg.max_record_bytes}")

    if not isinstance(cfg.payer, str) or not cfg.payer.strip():
        raise ValueError("payer must be a non-empty string")

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")

    if mode == "prod" and not str(cfg.db_path or "").strip():
        raise ValueError("db_path is required in prod mode")

    if cfg.oidc_keys_path and not Path(cfg.oidc_keys_path).is_file():
        raise ValueError(f"oidc_keys_path does not exist or is not a file: {cfg.oidc_keys_path!r}")


def default_engine_config() -> EngineConfig:
    rent = RentPolicy()
    return EngineConfig(
        mode="dev",
        db_path="",
        rent_base=rent.overhead_bytes,
        rent_per_byte=rent.per_byte,
        max_record_bytes=DEFAULT_MAX_RECORD_BYTES,
        oidc_keys_path="",
        payer="payer",
        api_host="127.0.0.1",
        api_port=8080,
        log_level="INFO",
    )


def engine_config_from_obj(raw: Any) -> EngineConfig:
    if not isinstance(raw, dict):
        raise ValueError("engine config must be a JSON object")

    d = default_engine_config()
    cfg = EngineConfig(
        mode=_as_str(raw.get("mode"), d.mode).lower(),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        rent_base=_as_int(raw.get("rent_base"), d.rent_base),
        rent_per_byte=_as_int(raw.get("rent_per_byte"), d.rent_per_byte),
        max_record_bytes=_as_int(raw.get("max_record_bytes"), d.max_record_bytes),
        oidc_keys_path=_as_str(raw.get("oidc_keys_path"), d.oidc_keys_path),
        payer=_as_str(raw.get("payer"), d.payer),
        api_host=_as_str(raw.get("api_host"), d.api_host),
        api_port=_as_int(raw.get("api_port"), d.api_port),
        log_level=_as_str(raw.get("log_level"), d.log_level).upper(),
    )
    validate_engine_config(cfg)
    return cfg


def read_engine_config_file(path: str) -> EngineConfig:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    return engine_config_from_obj(raw)


def load_engine_config(*, config_path: Optional[str] = None) -> EngineConfig:
    p = config_path or os.environ.get("AAUTH_CONFIG_PATH")
    if p:
        return read_engine_config_file(p)

    cfg = default_engine_config()
    level = (os.environ.get("AAUTH_LOG_LEVEL") or "").strip().upper()
    if level:
        cfg = replace(cfg, log_level=level)
    validate_engine_config(cfg)
    return cfg
