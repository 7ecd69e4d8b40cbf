# src/acdm/runtime/domain_dispatch.py

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from acdm.runtime.errors import ApplyError
from acdm.runtime.state_invariants import ensure_state
from acdm.runtime.tx_admission_types import TxEnvelope

# Contract appliers (each returns Optional[Json]; returning None means "not claimed")
from acdm.runtime.apply import dao, exchange, platform, staking, token
from acdm.runtime.apply.dao import apply_dao, view_dao
from acdm.runtime.apply.exchange import apply_exchange, view_exchange
from acdm.runtime.apply.platform import apply_platform, view_platform
from acdm.runtime.apply.staking import apply_staking, view_staking
from acdm.runtime.apply.token import apply_token, view_token

Json = Dict[str, Any]
ApplyFn = Callable[[Json, Any], Optional[Json]]


def _get(env: Any, key: str, default: Any = None) -> Any:
    """Read a field from either a TxEnvelope-like object or a dict.

    Tests and tools pass raw dict envelopes directly into apply_tx(), while
    the executor and contract calls pass TxEnvelope objects.
    """

    if isinstance(env, dict):
        return env.get(key, default)
    return getattr(env, key, default)


def _tx_type(env: Any) -> str:
    return str(_get(env, "tx_type", "") or "").strip().upper()


_APPLIERS: tuple[ApplyFn, ...] = (
    apply_token,
    apply_exchange,
    apply_staking,
    apply_dao,
    apply_platform,
)

_VIEWERS: tuple[ApplyFn, ...] = (
    view_token,
    view_exchange,
    view_staking,
    view_dao,
    view_platform,
)

PAYABLE_TX_TYPES: frozenset[str] = frozenset().union(
    token.PAYABLE_TX_TYPES,
    exchange.PAYABLE_TX_TYPES,
    staking.PAYABLE_TX_TYPES,
    dao.PAYABLE_TX_TYPES,
    platform.PAYABLE_TX_TYPES,
)


def is_payable(tx_type: str) -> bool:
    return str(tx_type or "").strip().upper() in PAYABLE_TX_TYPES


def _normalize(env: Any) -> TxEnvelope:
    # Tests and some tools pass raw dict envelopes.
    if isinstance(env, dict):
        return TxEnvelope.from_json(env)
    return env


def _run(fns: tuple[ApplyFn, ...], state: Json, env: TxEnvelope, t: str) -> Optional[Json]:
    for fn in fns:
        try:
            out = fn(state, env)
        except ApplyError:
            raise
        except Exception as e:
            code = getattr(e, "code", None)
            reason = getattr(e, "reason", None)
            details = getattr(e, "details", None)

            if code is not None or reason is not None:
                raise ApplyError(
                    str(code or "domain_error"),
                    str(reason or type(e).__name__),
                    details if details is not None else {"tx_type": t, "domain": fn.__name__},
                ) from e

            raise ApplyError(
                "domain_error",
                type(e).__name__,
                {"tx_type": t, "domain": fn.__name__, "error": str(e)},
            ) from e

        if out is not None:
            return out
    return None


def apply_tx(state: Json, env: Any) -> Json:
    """Dispatch a TxEnvelope to the first contract applier that claims it."""

    ensure_state(state)
    env_norm = _normalize(env)

    t = _tx_type(env_norm)
    if not t:
        raise ApplyError("invalid_tx", "missing_tx_type", {"tx_type": t})
    if int(_get(env_norm, "value", 0) or 0) > 0 and t not in PAYABLE_TX_TYPES:
        raise ApplyError("not_payable", "non_payable_tx_with_value", {"tx_type": t})

    out = _run(_APPLIERS, state, env_norm, t)
    if out is not None:
        return out
    raise ApplyError("tx_unimplemented", "tx_type_not_implemented", {"tx_type": t})


def apply_view(state: Json, env: Any) -> Json:
    """Dispatch a read-only query. Views never mutate `state`."""

    ensure_state(state)
    env_norm = _normalize(env)

    t = _tx_type(env_norm)
    if not t:
        raise ApplyError("invalid_tx", "missing_tx_type", {"tx_type": t})

    out = _run(_VIEWERS, state, env_norm, t)
    if out is not None:
        return out
    raise ApplyError("view_unimplemented", "view_type_not_implemented", {"tx_type": t})
