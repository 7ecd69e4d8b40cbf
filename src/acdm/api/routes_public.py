# src/acdm/api/routes_public.py
from __future__ import annotations

from fastapi import APIRouter

from acdm.api.routes_public_parts.accounts import router as accounts_router
from acdm.api.routes_public_parts.contracts import router as contracts_router
from acdm.api.routes_public_parts.dao import router as dao_router
from acdm.api.routes_public_parts.events import router as events_router
from acdm.api.routes_public_parts.health import router as health_router
from acdm.api.routes_public_parts.platform import router as platform_router
from acdm.api.routes_public_parts.staking import router as staking_router
from acdm.api.routes_public_parts.status import router as status_router
from acdm.api.routes_public_parts.tx import router as tx_router

public_router = APIRouter()

# Versioned API surface
public_router.include_router(health_router, prefix="/v1", tags=["health"])
public_router.include_router(status_router, prefix="/v1", tags=["status"])
public_router.include_router(accounts_router, prefix="/v1", tags=["accounts"])
public_router.include_router(contracts_router, prefix="/v1", tags=["contracts"])
public_router.include_router(platform_router, prefix="/v1", tags=["platform"])
public_router.include_router(dao_router, prefix="/v1", tags=["dao"])
public_router.include_router(staking_router, prefix="/v1", tags=["staking"])
public_router.include_router(events_router, prefix="/v1", tags=["events"])
public_router.include_router(tx_router, prefix="/v1", tags=["tx"])
