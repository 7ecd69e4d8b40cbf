# src/acdm/runtime/state_invariants.py
"""State invariants / normalization helpers.

ACDM state is a nested JSON-like dict mutated deterministically by the apply_*
contract modules. This module is the single place that:

  - validates the state is dict-like
  - ensures the core top-level containers exist so contract modules can rely on them

Contract-specific fields live inside ``state["contracts"][address]`` and are
owned by the module that deployed them.
"""

from __future__ import annotations

from collections.abc import MutableMapping
from typing import Any, Dict

Json = Dict[str, Any]

_DICT_KEYS = ("accounts", "params", "balances", "contracts")
_INT_KEYS = ("height", "time", "event_seq", "deploy_seq")


def ensure_state(st: Any) -> Json:
    """Ensure `st` is a dict and contains core keys.

    Returns the (possibly mutated) dict.

    Raises:
        TypeError: if st is not a MutableMapping or a core key has the wrong type
    """
    if not isinstance(st, MutableMapping):
        raise TypeError(f"state must be MutableMapping, got {type(st)}")

    for key in _DICT_KEYS:
        v = st.get(key)
        if v is None:
            st[key] = {}
        elif not isinstance(v, dict):
            # Fail closed: do not attempt to coerce arbitrary types.
            raise TypeError(f"state[{key!r}] must be dict, got {type(v)}")

    # Pending events of the transaction being applied; drained on commit.
    events = st.get("events")
    if events is None:
        st["events"] = []
    elif not isinstance(events, list):
        raise TypeError(f"state['events'] must be list, got {type(events)}")

    for key in _INT_KEYS:
        if not isinstance(st.get(key), int):
            st[key] = int(st.get(key) or 0)

    return st  # type: ignore[return-value]


__all__ = ["ensure_state"]
