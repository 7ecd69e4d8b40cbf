# src/acdm/runtime/apply/token.py
"""Fungible token contract (ERC-20 with a single minter).

Transfers report insufficient balance/allowance through ``{"success": False}``
rather than failing; callers decide whether that is fatal (see runtime.erc20).
Mint, burn and admin calls fail with ApplyError.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from acdm.ledger.constants import KIND_TOKEN, ZERO_ADDRESS
from acdm.ledger.state import contract_at, deploy_contract, emit_event, is_zero_address, norm_addr
from acdm.runtime.apply.ownable import require_owner, transfer_ownership
from acdm.runtime.errors import ApplyError
from acdm.runtime.payload import as_dict, as_str, req_addr, req_uint
from acdm.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]
Handler = Callable[[Json, Json, TxEnvelope], Json]

PAYABLE_TX_TYPES: frozenset[str] = frozenset()


def deploy_token(
    state: Json,
    *,
    deployer: str,
    name: str,
    symbol: str,
    decimals: int,
    initial_supply: int = 0,
    minter: Optional[str] = None,
) -> str:
    """Deploy a token; `initial_supply` (decimal units) is credited to the deployer."""
    if int(decimals) < 0 or int(decimals) > 36:
        raise ApplyError("invalid_config", "bad_decimals", {"decimals": decimals})
    owner = norm_addr(deployer)
    addr = deploy_contract(
        state,
        deployer=owner,
        kind=KIND_TOKEN,
        record={
            "name": str(name),
            "symbol": str(symbol),
            "decimals": int(decimals),
            "owner": owner,
            "minter": norm_addr(minter) if minter else "",
            "total_supply": 0,
            "balances": {},
            "allowances": {},
        },
    )
    if int(initial_supply) > 0:
        rec = contract_at(state, addr, KIND_TOKEN)
        _credit(rec, owner, int(initial_supply))
        rec["total_supply"] = int(initial_supply)
        emit_event(state, addr, "Transfer", **{"from": ZERO_ADDRESS, "to": owner, "value": int(initial_supply)})
    return addr


def _bal(rec: Json, account: str) -> int:
    return int(as_dict(rec.get("balances")).get(norm_addr(account), 0) or 0)


def _credit(rec: Json, account: str, amount: int) -> None:
    balances = rec.setdefault("balances", {})
    a = norm_addr(account)
    balances[a] = int(balances.get(a, 0) or 0) + int(amount)


def _debit(rec: Json, account: str, amount: int) -> None:
    balances = rec.setdefault("balances", {})
    a = norm_addr(account)
    left = int(balances.get(a, 0) or 0) - int(amount)
    if left:
        balances[a] = left
    else:
        balances.pop(a, None)


def _allowance(rec: Json, owner: str, spender: str) -> int:
    per_owner = as_dict(as_dict(rec.get("allowances")).get(norm_addr(owner)))
    return int(per_owner.get(norm_addr(spender), 0) or 0)


def _set_allowance(rec: Json, owner: str, spender: str, amount: int) -> None:
    per_owner = rec.setdefault("allowances", {}).setdefault(norm_addr(owner), {})
    per_owner[norm_addr(spender)] = int(amount)


def _move(state: Json, rec: Json, src: str, dst: str, amount: int) -> bool:
    if is_zero_address(dst) or _bal(rec, src) < amount:
        return False
    if amount:
        _debit(rec, src, amount)
        _credit(rec, dst, amount)
    emit_event(state, rec["address"], "Transfer", **{"from": norm_addr(src), "to": norm_addr(dst), "value": amount})
    return True


def _apply_transfer(state: Json, rec: Json, env: TxEnvelope) -> Json:
    payload = as_dict(env.payload)
    to = req_addr(payload, "to")
    amount = req_uint(payload, "amount")
    return {"success": _move(state, rec, env.signer, to, amount)}


def _apply_transfer_from(state: Json, rec: Json, env: TxEnvelope) -> Json:
    payload = as_dict(env.payload)
    src = req_addr(payload, "from")
    to = req_addr(payload, "to")
    amount = req_uint(payload, "amount")

    allowed = _allowance(rec, src, env.signer)
    if allowed < amount:
        return {"success": False}
    if not _move(state, rec, src, to, amount):
        return {"success": False}
    _set_allowance(rec, src, env.signer, allowed - amount)
    return {"success": True}


def _apply_approve(state: Json, rec: Json, env: TxEnvelope) -> Json:
    payload = as_dict(env.payload)
    spender = req_addr(payload, "spender")
    amount = req_uint(payload, "amount")
    _set_allowance(rec, env.signer, spender, amount)
    emit_event(state, rec["address"], "Approval", owner=norm_addr(env.signer), spender=spender, value=amount)
    return {"success": True}


def _apply_mint(state: Json, rec: Json, env: TxEnvelope) -> Json:
    minter = norm_addr(rec.get("minter"))
    if not minter or norm_addr(env.signer) != minter:
        raise ApplyError("not_minter", "Caller is not the minter", {"caller": norm_addr(env.signer)})
    payload = as_dict(env.payload)
    to = req_addr(payload, "to")
    amount = req_uint(payload, "amount")
    if is_zero_address(to):
        raise ApplyError("zero_address", "ERC20: mint to the zero address", {})

    _credit(rec, to, amount)
    rec["total_supply"] = int(rec.get("total_supply") or 0) + amount
    emit_event(state, rec["address"], "Transfer", **{"from": ZERO_ADDRESS, "to": to, "value": amount})
    return {"applied": "TOKEN_MINT", "amount": amount}


def _apply_burn(state: Json, rec: Json, env: TxEnvelope) -> Json:
    amount = req_uint(as_dict(env.payload), "amount")
    holder = norm_addr(env.signer)
    if _bal(rec, holder) < amount:
        raise ApplyError(
            "burn_exceeds_balance",
            "ERC20: burn amount exceeds balance",
            {"holder": holder, "amount": amount},
        )
    _debit(rec, holder, amount)
    rec["total_supply"] = int(rec.get("total_supply") or 0) - amount
    emit_event(state, rec["address"], "Transfer", **{"from": holder, "to": ZERO_ADDRESS, "value": amount})
    return {"applied": "TOKEN_BURN", "amount": amount}


def _apply_set_minter(state: Json, rec: Json, env: TxEnvelope) -> Json:
    require_owner(rec, env)
    if as_str(rec.get("minter")):
        raise ApplyError("already_initialized", "Already initialized", {"minter": rec.get("minter")})
    minter = req_addr(as_dict(env.payload), "minter")
    if is_zero_address(minter):
        raise ApplyError("zero_address", "Address is zero", {})
    rec["minter"] = minter
    return {"applied": "TOKEN_SET_MINTER", "minter": minter}


def _apply_transfer_ownership(state: Json, rec: Json, env: TxEnvelope) -> Json:
    return transfer_ownership(state, rec, env)


_TOKEN_HANDLERS: Dict[str, Handler] = {
    "TOKEN_TRANSFER": _apply_transfer,
    "TOKEN_TRANSFER_FROM": _apply_transfer_from,
    "TOKEN_APPROVE": _apply_approve,
    "TOKEN_MINT": _apply_mint,
    "TOKEN_BURN": _apply_burn,
    "TOKEN_SET_MINTER": _apply_set_minter,
    "TOKEN_TRANSFER_OWNERSHIP": _apply_transfer_ownership,
}


def _view_balance_of(state: Json, rec: Json, env: TxEnvelope) -> Json:
    return {"balance": _bal(rec, req_addr(as_dict(env.payload), "account"))}


def _view_allowance(state: Json, rec: Json, env: TxEnvelope) -> Json:
    payload = as_dict(env.payload)
    return {"allowance": _allowance(rec, req_addr(payload, "owner"), req_addr(payload, "spender"))}


def _view_decimals(state: Json, rec: Json, env: TxEnvelope) -> Json:
    return {"decimals": int(rec.get("decimals") or 0)}


def _view_total_supply(state: Json, rec: Json, env: TxEnvelope) -> Json:
    return {"total_supply": int(rec.get("total_supply") or 0)}


_TOKEN_VIEWS: Dict[str, Handler] = {
    "TOKEN_BALANCE_OF": _view_balance_of,
    "TOKEN_ALLOWANCE": _view_allowance,
    "TOKEN_DECIMALS": _view_decimals,
    "TOKEN_TOTAL_SUPPLY": _view_total_supply,
}


def apply_token(state: Json, env: TxEnvelope) -> Optional[Json]:
    fn = _TOKEN_HANDLERS.get(as_str(env.tx_type).upper())
    if fn is None:
        return None
    return fn(state, contract_at(state, env.to, KIND_TOKEN), env)


def view_token(state: Json, env: TxEnvelope) -> Optional[Json]:
    fn = _TOKEN_VIEWS.get(as_str(env.tx_type).upper())
    if fn is None:
        return None
    return fn(state, contract_at(state, env.to, KIND_TOKEN), env)
