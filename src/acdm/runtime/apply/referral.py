# src/acdm/runtime/apply/referral.py
"""Two-tier referral registry, stored inside the platform record.

Each registered account names at most one referrer, fixed at registration.
The referrer must already be registered and cannot be the account itself,
so the graph is a forest and an upline lookup needs at most two hops.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from acdm.ledger.state import emit_event, is_zero_address, norm_addr
from acdm.runtime.errors import ApplyError
from acdm.runtime.payload import as_dict

Json = Dict[str, Any]


def _accounts(platform: Json) -> Json:
    return platform.setdefault("referrals", {})


def lookup(platform: Json, account: str) -> Json:
    rec = as_dict(as_dict(platform.get("referrals")).get(norm_addr(account)))
    return {
        "account": norm_addr(account),
        "registered": bool(rec.get("registered", False)),
        "referrer": rec.get("referrer") or None,
    }


def is_registered(platform: Json, account: str) -> bool:
    return lookup(platform, account)["registered"]


def register(state: Json, platform: Json, account: str, referrer: Optional[str]) -> Json:
    account = norm_addr(account)
    if is_registered(platform, account):
        raise ApplyError("already_registered", "Already registered", {"account": account})

    ref: Optional[str] = None
    if not is_zero_address(referrer):
        ref = norm_addr(referrer)
        if ref == account:
            raise ApplyError("self_referral", "Sender can't be a referrer", {"account": account})
        if not is_registered(platform, ref):
            raise ApplyError("referrer_not_registered", "Referrer is not registered", {"referrer": ref})

    _accounts(platform)[account] = {"registered": True, "referrer": ref}
    emit_event(state, platform["address"], "Registered", account=account, referrer=ref)
    return {"applied": "PLATFORM_REGISTER", "account": account, "referrer": ref}


def upline(platform: Json, account: str) -> Tuple[Optional[str], Optional[str]]:
    """(first-tier referrer, second-tier referrer) of `account`; None where absent."""
    first = lookup(platform, account)["referrer"]
    if first is None:
        return None, None
    return first, lookup(platform, first)["referrer"]
