from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from acdm.api.routes_public_parts.common import _executor, _int_param

router = APIRouter()

Json = Dict[str, Any]


@router.get("/events")
def list_events(request: Request) -> Json:
    """Contract events after sequence number `since`, oldest first.

    Query params:
      since:    last seen event seq (default 0)
      limit:    page size, capped by ACDM_API_EVENTS_LIMIT
      contract: optional contract address filter
      event:    optional event name filter (e.g. RoundSwitch)
    """
    ex = _executor(request)
    cap = int(request.app.state.cfg.events_page_limit)
    since = max(0, _int_param(request.query_params.get("since"), 0))
    limit = max(1, min(cap, _int_param(request.query_params.get("limit"), cap)))
    contract = str(request.query_params.get("contract") or "").strip() or None
    name = str(request.query_params.get("event") or "").strip() or None

    evs = ex.events(since_seq=since, limit=limit, contract=contract, name=name)

    next_since = int(evs[-1]["seq"]) if evs else since
    return {"ok": True, "events": evs, "next_since": next_since}
