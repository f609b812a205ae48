from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import FastAPI

from aauth.api.errors import install_error_handlers
from aauth.api.routes import router
from aauth.api.structured_logging import RequestLogMiddleware
from aauth.ledger.record_store import InMemoryRecordStore, RecordStore
from aauth.runtime.engine import AccountEngine
from aauth.runtime.engine_config import EngineConfig, load_engine_config
from aauth.runtime.sqlite_store import SqliteDB, SqliteRecordStore
from aauth.util.logging import configure_structured_logging, log_event

_log = logging.getLogger("aauth.boot")

# Payer balance seeded on first boot outside prod so deposits can be paid.
DEV_PAYER_FUNDS = 10**15


def _build_store(cfg: EngineConfig) -> RecordStore:
    if cfg.db_path:
        return SqliteRecordStore(
            db=SqliteDB(path=cfg.db_path),
            rent=cfg.rent_policy(),
            max_record_bytes=cfg.max_record_bytes,
        )
    return InMemoryRecordStore(rent=cfg.rent_policy(), max_record_bytes=cfg.max_record_bytes)


def build_engine(cfg: Optional[EngineConfig] = None) -> AccountEngine:
    """Build the AccountEngine for API runtime.

    Tests monkeypatch `aauth.api.app.build_engine` to attach their own engine.
    """
    cfg = cfg or load_engine_config()
    engine = AccountEngine(store=_build_store(cfg), config=cfg)

    raw = (os.environ.get("AAUTH_PAYER_INITIAL_FUNDS") or "").strip()
    funds = int(raw) if raw else (0 if cfg.mode == "prod" else DEV_PAYER_FUNDS)
    if funds > 0 and engine.store.balance(engine.payer) == 0:
        engine.store.fund(engine.payer, funds)

    log_event(_log, "engine_ready", mode=cfg.mode, db_path=cfg.db_path or ":memory:", payer=engine.payer)
    return engine


def create_app(*, boot_runtime: bool = True, engine: Optional[AccountEngine] = None) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): load engine config and attach an engine
      - False: attach `engine` as given (may be None) for unit tests
    """
    mode = (os.environ.get("AAUTH_MODE") or "dev").strip().lower()

    if mode == "prod":
        app = FastAPI(title="aauth API", docs_url=None, redoc_url=None, openapi_url=None)
    else:
        app = FastAPI(title="aauth API")

    if boot_runtime and engine is None:
        cfg = load_engine_config()
        configure_structured_logging(cfg.log_level)
        engine = build_engine(cfg)
    app.state.engine = engine

    app.add_middleware(RequestLogMiddleware)
    install_error_handlers(app)
    app.include_router(router)
    return app
