# src/acdm/runtime/apply/exchange.py
"""Constant-product exchange router between native ETH and single tokens.

One pool per token; reserves are held by the router itself. Pools are
created on first liquidity provision together with their LP token, for
which the router is the minter. Swap math follows the 0.3% fee formula.
"""

from __future__ import annotations

import math
from typing import Any, Callable, Dict, List, Optional

from acdm.ledger.constants import KIND_ROUTER, ZERO_ADDRESS
from acdm.ledger.state import contract_at, deploy_contract, emit_event, norm_addr, now, transfer_native
from acdm.runtime import erc20
from acdm.runtime.apply.token import deploy_token
from acdm.runtime.errors import ApplyError
from acdm.runtime.payload import as_dict, as_str, opt_uint, req_addr, req_uint
from acdm.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]
Handler = Callable[[Json, Json, TxEnvelope], Json]

MINIMUM_LIQUIDITY = 1_000
FEE_NUM = 997
FEE_DEN = 1_000

PAYABLE_TX_TYPES: frozenset[str] = frozenset({"ROUTER_ADD_LIQUIDITY_ETH", "ROUTER_SWAP_EXACT_ETH_FOR_TOKENS"})


def deploy_router(state: Json, *, deployer: str) -> str:
    addr = deploy_contract(state, deployer=deployer, kind=KIND_ROUTER, record={"weth": "", "pools": {}})
    rec = contract_at(state, addr, KIND_ROUTER)
    rec["weth"] = deploy_token(state, deployer=addr, name="Wrapped Ether", symbol="WETH", decimals=18)
    return addr


def get_amount_out(amount_in: int, reserve_in: int, reserve_out: int) -> int:
    if amount_in <= 0:
        raise ApplyError("insufficient_input_amount", "UniswapV2Library: INSUFFICIENT_INPUT_AMOUNT", {})
    if reserve_in <= 0 or reserve_out <= 0:
        raise ApplyError("insufficient_liquidity", "UniswapV2Library: INSUFFICIENT_LIQUIDITY", {})
    amount_in_with_fee = amount_in * FEE_NUM
    return (amount_in_with_fee * reserve_out) // (reserve_in * FEE_DEN + amount_in_with_fee)


def _check_deadline(state: Json, payload: Json) -> None:
    deadline = req_uint(payload, "deadline")
    if deadline < now(state):
        raise ApplyError("expired", "UniswapV2Router: EXPIRED", {"deadline": deadline, "now": now(state)})


def _pool(rec: Json, token: str) -> Optional[Json]:
    p = as_dict(rec.get("pools")).get(norm_addr(token))
    return p if isinstance(p, dict) else None


def _path(rec: Json, payload: Json) -> List[str]:
    raw = payload.get("path")
    if not isinstance(raw, list):
        raise ApplyError("invalid_payload", "missing_path", {})
    path = [norm_addr(p) for p in raw]
    # Single-hop ETH -> token only.
    if len(path) != 2 or path[0] != rec["weth"]:
        raise ApplyError("invalid_path", "UniswapV2Router: INVALID_PATH", {"path": path})
    return path


def _apply_add_liquidity_eth(state: Json, rec: Json, env: TxEnvelope) -> Json:
    payload = as_dict(env.payload)
    _check_deadline(state, payload)
    token = req_addr(payload, "token")
    desired = req_uint(payload, "amount_token_desired")
    token_min = opt_uint(payload, "amount_token_min")
    eth_min = opt_uint(payload, "amount_eth_min")
    to = norm_addr(payload.get("to")) or norm_addr(env.signer)
    value = int(env.value)

    pool = _pool(rec, token)
    if pool is None:
        lp = deploy_token(
            state,
            deployer=rec["address"],
            name="Uniswap V2",
            symbol="UNI-V2",
            decimals=18,
            minter=rec["address"],
        )
        pool = {"token": token, "lp_token": lp, "reserve_eth": 0, "reserve_token": 0, "total_liquidity": 0}
        rec.setdefault("pools", {})[token] = pool
        emit_event(state, rec["address"], "PairCreated", token=token, pair=lp)

    re, rt = int(pool["reserve_eth"]), int(pool["reserve_token"])
    if re == 0 and rt == 0:
        amount_token, amount_eth = desired, value
    else:
        token_optimal = value * rt // re
        if token_optimal <= desired:
            if token_optimal < token_min:
                raise ApplyError("insufficient_b_amount", "UniswapV2Router: INSUFFICIENT_B_AMOUNT", {})
            amount_token, amount_eth = token_optimal, value
        else:
            eth_optimal = desired * re // rt
            if eth_optimal < eth_min:
                raise ApplyError("insufficient_a_amount", "UniswapV2Router: INSUFFICIENT_A_AMOUNT", {})
            amount_token, amount_eth = desired, eth_optimal

    total = int(pool["total_liquidity"])
    if total == 0:
        liquidity = math.isqrt(amount_token * amount_eth) - MINIMUM_LIQUIDITY
        # Permanently locked: counted in total liquidity, never minted.
        locked = MINIMUM_LIQUIDITY
    else:
        liquidity = min(amount_eth * total // re, amount_token * total // rt)
        locked = 0
    if liquidity <= 0:
        raise ApplyError("insufficient_liquidity_minted", "UniswapV2: INSUFFICIENT_LIQUIDITY_MINTED", {})

    erc20.safe_transfer_from(
        state, token=token, spender=rec["address"], src=env.signer, to=rec["address"], amount=amount_token
    )
    erc20.mint(state, token=pool["lp_token"], minter=rec["address"], to=to, amount=liquidity)

    pool["reserve_eth"] = re + amount_eth
    pool["reserve_token"] = rt + amount_token
    pool["total_liquidity"] = total + liquidity + locked

    refund = value - amount_eth
    if refund:
        transfer_native(state, rec["address"], env.signer, refund)

    return {
        "applied": "ROUTER_ADD_LIQUIDITY_ETH",
        "amount_token": amount_token,
        "amount_eth": amount_eth,
        "liquidity": liquidity,
        "pair": pool["lp_token"],
    }


def _apply_swap_exact_eth_for_tokens(state: Json, rec: Json, env: TxEnvelope) -> Json:
    payload = as_dict(env.payload)
    _check_deadline(state, payload)
    path = _path(rec, payload)
    amount_out_min = opt_uint(payload, "amount_out_min")
    to = req_addr(payload, "to")

    pool = _pool(rec, path[1])
    if pool is None:
        raise ApplyError("insufficient_liquidity", "UniswapV2Library: INSUFFICIENT_LIQUIDITY", {"token": path[1]})

    amount_in = int(env.value)
    out = get_amount_out(amount_in, int(pool["reserve_eth"]), int(pool["reserve_token"]))
    if out < amount_out_min:
        raise ApplyError(
            "insufficient_output_amount",
            "UniswapV2Router: INSUFFICIENT_OUTPUT_AMOUNT",
            {"amount_out": out, "amount_out_min": amount_out_min},
        )

    pool["reserve_eth"] = int(pool["reserve_eth"]) + amount_in
    pool["reserve_token"] = int(pool["reserve_token"]) - out
    erc20.safe_transfer(state, token=path[1], sender=rec["address"], to=to, amount=out)
    emit_event(state, rec["address"], "Swap", sender=norm_addr(env.signer), amount_in=amount_in, amount_out=out, to=to)
    return {"applied": "ROUTER_SWAP_EXACT_ETH_FOR_TOKENS", "amounts": [amount_in, out]}


_ROUTER_HANDLERS: Dict[str, Handler] = {
    "ROUTER_ADD_LIQUIDITY_ETH": _apply_add_liquidity_eth,
    "ROUTER_SWAP_EXACT_ETH_FOR_TOKENS": _apply_swap_exact_eth_for_tokens,
}


def _view_weth(state: Json, rec: Json, env: TxEnvelope) -> Json:
    return {"weth": rec["weth"]}


def _view_pair(state: Json, rec: Json, env: TxEnvelope) -> Json:
    pool = _pool(rec, req_addr(as_dict(env.payload), "token"))
    if pool is None:
        return {"pair": ZERO_ADDRESS, "reserve_eth": 0, "reserve_token": 0}
    return {"pair": pool["lp_token"], "reserve_eth": pool["reserve_eth"], "reserve_token": pool["reserve_token"]}


def _view_get_amounts_out(state: Json, rec: Json, env: TxEnvelope) -> Json:
    payload = as_dict(env.payload)
    path = _path(rec, payload)
    amount_in = req_uint(payload, "amount_in")
    pool = _pool(rec, path[1])
    if pool is None:
        raise ApplyError("insufficient_liquidity", "UniswapV2Library: INSUFFICIENT_LIQUIDITY", {"token": path[1]})
    return {"amounts": [amount_in, get_amount_out(amount_in, int(pool["reserve_eth"]), int(pool["reserve_token"]))]}


_ROUTER_VIEWS: Dict[str, Handler] = {
    "ROUTER_WETH": _view_weth,
    "ROUTER_PAIR": _view_pair,
    "ROUTER_GET_AMOUNTS_OUT": _view_get_amounts_out,
}


def apply_exchange(state: Json, env: TxEnvelope) -> Optional[Json]:
    fn = _ROUTER_HANDLERS.get(as_str(env.tx_type).upper())
    if fn is None:
        return None
    return fn(state, contract_at(state, env.to, KIND_ROUTER), env)


def view_exchange(state: Json, env: TxEnvelope) -> Optional[Json]:
    fn = _ROUTER_VIEWS.get(as_str(env.tx_type).upper())
    if fn is None:
        return None
    return fn(state, contract_at(state, env.to, KIND_ROUTER), env)
