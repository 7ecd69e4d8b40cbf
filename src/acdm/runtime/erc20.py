from __future__ import annotations

from typing import Any, Dict

from acdm.runtime.calls import call, view
from acdm.runtime.errors import ApplyError

Json = Dict[str, Any]

SAFE_ERC20_REASON = "SafeERC20: ERC20 operation did not succeed"


def _require_success(out: Json, *, token: str, op: str) -> None:
    if not bool(out.get("success", False)):
        raise ApplyError("transfer_failed", SAFE_ERC20_REASON, {"token": token, "op": op})


def safe_transfer(state: Json, *, token: str, sender: str, to: str, amount: int) -> None:
    """Transfer `amount` of `token` from `sender`; a False result is a failure."""
    try:
        out = call(state, sender=sender, to=token, tx_type="TOKEN_TRANSFER", payload={"to": to, "amount": int(amount)})
    except ApplyError as e:
        raise ApplyError("transfer_failed", SAFE_ERC20_REASON, {"token": token, "op": "transfer", "cause": e.code}) from e
    _require_success(out, token=token, op="transfer")


def safe_transfer_from(state: Json, *, token: str, spender: str, src: str, to: str, amount: int) -> None:
    try:
        out = call(
            state,
            sender=spender,
            to=token,
            tx_type="TOKEN_TRANSFER_FROM",
            payload={"from": src, "to": to, "amount": int(amount)},
        )
    except ApplyError as e:
        raise ApplyError(
            "transfer_failed", SAFE_ERC20_REASON, {"token": token, "op": "transferFrom", "cause": e.code}
        ) from e
    _require_success(out, token=token, op="transferFrom")


def mint(state: Json, *, token: str, minter: str, to: str, amount: int) -> None:
    call(state, sender=minter, to=token, tx_type="TOKEN_MINT", payload={"to": to, "amount": int(amount)})


def burn(state: Json, *, token: str, holder: str, amount: int) -> None:
    call(state, sender=holder, to=token, tx_type="TOKEN_BURN", payload={"amount": int(amount)})


def balance_of(state: Json, *, token: str, account: str) -> int:
    return int(view(state, to=token, tx_type="TOKEN_BALANCE_OF", payload={"account": account})["balance"])


def allowance(state: Json, *, token: str, owner: str, spender: str) -> int:
    out = view(state, to=token, tx_type="TOKEN_ALLOWANCE", payload={"owner": owner, "spender": spender})
    return int(out["allowance"])


def decimals(state: Json, *, token: str) -> int:
    return int(view(state, to=token, tx_type="TOKEN_DECIMALS")["decimals"])
