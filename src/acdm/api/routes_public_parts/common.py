from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request

from acdm.api.errors import ApiError
from acdm.runtime.errors import ApplyError

Json = Dict[str, Any]

_NOT_FOUND_CODES = {"contract_not_found", "wrong_contract_kind", "order_not_found", "proposal_not_found"}


def _executor(request: Request):
    ex = getattr(request.app.state, "executor", None)
    if ex is None:
        raise ApiError.internal("not_ready", "executor not attached to app.state", {})
    return ex


def _snapshot(request: Request) -> Json:
    """Return a dict snapshot of the current ledger state."""
    ex = _executor(request)
    st = ex.snapshot()
    if not isinstance(st, dict):
        raise ApiError.internal("bad_state", "executor state is not a dict", {})
    return st


def _int_param(v: Any, default: int) -> int:
    """Parse an int-ish query param safely."""
    if v is None:
        return int(default)
    s = str(v).strip()
    if s == "":
        return int(default)
    try:
        return int(s)
    except ValueError:
        return int(default)


def _api_error_from_apply(e: ApplyError) -> ApiError:
    details = e.details if isinstance(e.details, dict) else {"details": e.details}
    if e.code in _NOT_FOUND_CODES:
        return ApiError.not_found(e.code, e.reason, details)
    return ApiError.bad_request(e.code, e.reason, details)


def _view(request: Request, *, to: str, tx_type: str, payload: Optional[Json] = None) -> Json:
    """Run a read-only contract view and map contract errors to HTTP errors."""
    ex = _executor(request)
    try:
        return ex.view(to=to, tx_type=tx_type, payload=payload)
    except ApplyError as e:
        raise _api_error_from_apply(e) from e
