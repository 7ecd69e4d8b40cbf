from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from acdm.api.config import load_api_config
from acdm.api.errors import ApiError, api_error_handler
from acdm.api.routes_public import public_router
from acdm.api.security import RateLimitMiddleware, RequestSizeLimitMiddleware
from acdm.api.structured_logging import RequestLogMiddleware
from acdm.runtime.chain_config import load_chain_config
from acdm.runtime.executor import AcdmExecutor
from acdm.runtime.runtime_logging import log_event

log = logging.getLogger("acdm.api")


def build_executor() -> AcdmExecutor:
    """Build the ledger executor for the API runtime.

    This wrapper exists so tests can monkeypatch `acdm.api.app.build_executor`
    without reaching into runtime modules.
    """
    return AcdmExecutor.from_config(load_chain_config())


def _parse_cors_origins() -> List[str]:
    """Parse CORS origins with production-safe defaults.

    Policy:
      - If ACDM_CORS_ORIGINS is unset/empty -> CORS disabled (fail-closed)
      - Wildcard "*" is rejected in ACDM_MODE=prod
      - In non-prod modes, "*" is allowed for convenience
    """
    raw = os.environ.get("ACDM_CORS_ORIGINS", "").strip()
    mode = os.environ.get("ACDM_MODE", "prod").strip().lower()

    if not raw:
        return []

    origins = [o.strip() for o in raw.split(",") if o.strip()]

    if "*" in origins:
        if mode == "prod":
            raise RuntimeError(
                "Unsafe CORS configuration: wildcard '*' not allowed in production. "
                "Set explicit origins in ACDM_CORS_ORIGINS."
            )
        return ["*"]

    return origins


def create_app(*, boot_runtime: bool = True) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): load chain config + attach executor via build_executor()
      - False: keep lightweight for unit tests / import-time validation
    """
    mode = os.environ.get("ACDM_MODE", "prod").strip().lower()

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        snap = getattr(getattr(app.state, "executor", None), "snapshot", None)
        st = snap() if callable(snap) else {}
        log_event(
            log,
            "api_started",
            mode=mode,
            chain_id=str(st.get("chain_id") or ""),
            height=int(st.get("height") or 0),
        )
        yield
        log_event(log, "api_stopped", mode=mode)

    # Disable docs in production.
    if mode == "prod":
        app = FastAPI(
            title="ACDM Platform API",
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
            lifespan=_lifespan,
        )
    else:
        app = FastAPI(title="ACDM Platform API", lifespan=_lifespan)

    app.state.cfg = load_api_config()

    if boot_runtime:
        app.state.executor = build_executor()
    else:
        app.state.executor = None

    # --- Middleware ---
    # Starlette runs the last added middleware first: logging wraps the
    # size limiter, which rejects oversized bodies before rate accounting.
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(RequestLogMiddleware)

    cors_origins = _parse_cors_origins()
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type"],
        )

    app.add_exception_handler(ApiError, api_error_handler)

    # --- Routers ---
    app.include_router(public_router)

    return app
