# src/acdm/runtime/apply/platform.py
"""ACDM trading platform.

The platform alternates between two rounds:

- SALE: the platform sells its own ACDM inventory at a fixed price. Unsold
  inventory is burned when the round ends.
- TRADE: holders put sell orders (tokens are taken into custody) which
  anyone can redeem for ETH. The volume traded in wei determines how many
  tokens the next SALE round issues.

Both rounds pay two-tier referral fees to the upline of the buyer (SALE) or
of the order owner (TRADE). Trade fees with no referrer to receive them are
collected in the treasury, which the DAO either sends to the owner or spends
on buying back and burning the reward token.
ETH kept from SALE purchases is tracked separately as sale proceeds, which
the owner withdraws.

Prices are wei per whole token; all amounts are token decimal units, so the
effective unit price is ``price // 10**decimals``.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple

from acdm.ledger.constants import (
    KIND_PLATFORM,
    PRICE_GROWTH_DEN,
    PRICE_GROWTH_NUM,
    PRICE_INCREMENT_WEI,
    ROUND_SALE,
    ROUND_TRADE,
    SWAP_DEADLINE_SLACK_S,
)
from acdm.ledger.state import contract_at, deploy_contract, emit_event, is_zero_address, norm_addr, now, transfer_native
from acdm.runtime import erc20
from acdm.runtime.apply import referral
from acdm.runtime.apply.ownable import require_owner, transfer_ownership
from acdm.runtime.calls import call, view
from acdm.runtime.errors import ApplyError
from acdm.runtime.payload import as_bool, as_dict, as_str, req_addr, req_uint
from acdm.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]
Handler = Callable[[Json, Json, TxEnvelope], Json]

PAYABLE_TX_TYPES: frozenset[str] = frozenset({"PLATFORM_BUY", "PLATFORM_REDEEM_ORDER"})


def _validate_sale_fees(first: int, second: int) -> None:
    if first > 100 or second > 100 or first + second > 100:
        raise ApplyError("invalid_fee", "Fees exceed 100%", {"first": first, "second": second})


def _validate_trade_fee(fee: int) -> None:
    # Paid once per tier.
    if 2 * fee > 100:
        raise ApplyError("invalid_fee", "Fees exceed 100%", {"trade_fee": fee})


def _validate_duration(d: int) -> None:
    if d == 0:
        raise ApplyError("zero_value", "Can't be zero", {"round_duration": d})


def deploy_platform(
    state: Json,
    *,
    deployer: str,
    router: str,
    reward_token: str,
    dao: str,
    round_duration: int,
    first_referrer_sale_fee: int,
    second_referrer_sale_fee: int,
    referrer_trade_fee: int,
) -> str:
    for name, a in (("router", router), ("reward_token", reward_token), ("dao", dao)):
        if is_zero_address(a):
            raise ApplyError("zero_address", "Address is zero", {"field": name})
    _validate_duration(int(round_duration))
    _validate_sale_fees(int(first_referrer_sale_fee), int(second_referrer_sale_fee))
    _validate_trade_fee(int(referrer_trade_fee))
    return deploy_contract(
        state,
        deployer=deployer,
        kind=KIND_PLATFORM,
        record={
            "owner": norm_addr(deployer),
            "dao": norm_addr(dao),
            "router": norm_addr(router),
            "reward_token": norm_addr(reward_token),
            "token": "",
            "decimals": 0,
            "initialized": False,
            "round_duration": int(round_duration),
            "first_referrer_sale_fee": int(first_referrer_sale_fee),
            "second_referrer_sale_fee": int(second_referrer_sale_fee),
            "referrer_trade_fee": int(referrer_trade_fee),
            "round": ROUND_SALE,
            "round_end": 0,
            "round_index": 0,
            "token_price": 0,
            "tokens_issued": 0,
            "tokens_sold": 0,
            "trade_volume": 0,
            "treasury": 0,
            "sale_proceeds": 0,
            "next_order_id": 0,
            "orders": {},
            "referrals": {},
        },
    )


# ----------------------------
# Guards
# ----------------------------


def _require_initialized(rec: Json) -> None:
    if not bool(rec.get("initialized")):
        raise ApplyError("not_initialized", "Not initialized", {"contract": rec.get("address")})


def _require_active_round(state: Json, rec: Json, expected: str) -> None:
    _require_initialized(rec)
    if rec["round"] != expected:
        name = "Trade" if expected == ROUND_TRADE else "Sale"
        raise ApplyError("wrong_round", f"Not a '{name}' round", {"round": rec["round"]})
    t = now(state)
    if t >= int(rec["round_end"]):
        raise ApplyError("round_over", "Round is over", {"now": t, "round_end": rec["round_end"]})


def _unit_price(rec: Json, price: int) -> int:
    return int(price) // (10 ** int(rec["decimals"]))


def _order(rec: Json, order_id: int) -> Json:
    o = as_dict(rec.get("orders")).get(str(order_id))
    if not isinstance(o, dict) or not bool(o.get("active")):
        raise ApplyError("order_not_found", "Order does not exist", {"order_id": order_id})
    return o


def _pay(state: Json, rec: Json, to: str, amount: int) -> None:
    transfer_native(state, rec["address"], to, amount)
    emit_event(state, rec["address"], "ReferralPayment", referrer=to, amount=amount)


def _pay_referrers(state: Json, rec: Json, tiers: List[Tuple[Optional[str], int]]) -> int:
    """Pay each present referrer its share; returns the total of shares with no referrer."""
    unpaid = 0
    for referrer, share in tiers:
        if share == 0:
            continue
        if referrer is None:
            unpaid += share
        else:
            _pay(state, rec, referrer, share)
    return unpaid


def _refund(state: Json, rec: Json, to: str, amount: int) -> None:
    if amount > 0:
        transfer_native(state, rec["address"], to, amount)


# ----------------------------
# Lifecycle
# ----------------------------


def _apply_init(state: Json, rec: Json, env: TxEnvelope) -> Json:
    require_owner(rec, env)
    if bool(rec.get("initialized")):
        raise ApplyError("already_initialized", "Already initialized", {"token": rec.get("token")})
    payload = as_dict(env.payload)
    token = req_addr(payload, "token")
    if is_zero_address(token):
        raise ApplyError("zero_address", "Address is zero", {"field": "token"})
    initial_supply = req_uint(payload, "initial_supply")
    initial_price = req_uint(payload, "initial_price")

    dec = erc20.decimals(state, token=token)
    if initial_price // (10**dec) == 0:
        raise ApplyError("price_too_low", "Price is too low", {"price": initial_price, "decimals": dec})

    issued = initial_supply * 10**dec
    rec["token"] = token
    rec["decimals"] = dec
    rec["initialized"] = True
    rec["round"] = ROUND_SALE
    rec["round_index"] = 0
    rec["round_end"] = now(state) + int(rec["round_duration"])
    rec["token_price"] = initial_price
    # Unsold inventory was burned when the trade round opened, so no supply carries over.
    rec["tokens_issued"] = issued
    rec["tokens_sold"] = 0
    rec["trade_volume"] = 0
    if issued:
        erc20.mint(state, token=token, minter=rec["address"], to=rec["address"], amount=issued)

    return {"applied": "PLATFORM_INIT", "token": token, "tokens_issued": issued, "round_end": rec["round_end"]}


def _apply_start_trade_round(state: Json, rec: Json, env: TxEnvelope) -> Json:
    _require_initialized(rec)
    if rec["round"] != ROUND_SALE:
        raise ApplyError("wrong_round", "Current round is TRADE", {"round": rec["round"]})
    t = now(state)
    issued, sold = int(rec["tokens_issued"]), int(rec["tokens_sold"])
    if t < int(rec["round_end"]) and sold < issued:
        raise ApplyError("not_ready_yet", "Not ready yet", {"now": t, "round_end": rec["round_end"]})

    unsold = issued - sold
    if unsold > 0:
        erc20.burn(state, token=rec["token"], holder=rec["address"], amount=unsold)

    rec["round"] = ROUND_TRADE
    rec["trade_volume"] = 0
    rec["round_end"] = t + int(rec["round_duration"])
    rec["round_index"] = int(rec["round_index"]) + 1
    emit_event(state, rec["address"], "RoundSwitch", round=ROUND_TRADE)
    return {"applied": "PLATFORM_START_TRADE_ROUND", "burned": unsold, "round_end": rec["round_end"]}


def _apply_start_sale_round(state: Json, rec: Json, env: TxEnvelope) -> Json:
    _require_initialized(rec)
    if rec["round"] != ROUND_TRADE:
        raise ApplyError("wrong_round", "Current round is SALE", {"round": rec["round"]})
    t = now(state)
    if t < int(rec["round_end"]):
        raise ApplyError("deadline_not_met", "Round deadline is not met", {"now": t, "round_end": rec["round_end"]})

    volume = int(rec["trade_volume"])
    price = int(rec["token_price"])
    # Issuance is priced at the round that just ended.
    issued = (volume // price) * 10 ** int(rec["decimals"])
    if issued > 0:
        erc20.mint(state, token=rec["token"], minter=rec["address"], to=rec["address"], amount=issued)
    if volume > 0:
        rec["token_price"] = price * PRICE_GROWTH_NUM // PRICE_GROWTH_DEN + PRICE_INCREMENT_WEI

    rec["tokens_issued"] = issued
    rec["tokens_sold"] = 0
    rec["round"] = ROUND_SALE
    rec["round_end"] = t + int(rec["round_duration"])
    rec["round_index"] = int(rec["round_index"]) + 1
    emit_event(state, rec["address"], "RoundSwitch", round=ROUND_SALE)
    return {
        "applied": "PLATFORM_START_SALE_ROUND",
        "tokens_issued": issued,
        "token_price": rec["token_price"],
        "round_end": rec["round_end"],
    }


# ----------------------------
# Sale round
# ----------------------------


def _apply_buy(state: Json, rec: Json, env: TxEnvelope) -> Json:
    _require_active_round(state, rec, ROUND_SALE)
    buyer = norm_addr(env.signer)
    value = int(env.value)

    unit = _unit_price(rec, rec["token_price"])
    if value // unit == 0:
        raise ApplyError("insufficient_value", "Too low msg.value", {"value": value, "unit_price": unit})
    remaining = int(rec["tokens_issued"]) - int(rec["tokens_sold"])
    if remaining <= 0:
        raise ApplyError("no_more_tokens", "No more tokens", {})

    amount = min(value // unit, remaining)
    spent = amount * unit
    rec["tokens_sold"] = int(rec["tokens_sold"]) + amount

    first, second = referral.upline(rec, buyer)
    tiers: List[Tuple[Optional[str], int]] = [
        (first, spent * int(rec["first_referrer_sale_fee"]) // 100),
        (second, spent * int(rec["second_referrer_sale_fee"]) // 100),
    ]
    paid = sum(share for ref, share in tiers if ref is not None)
    _pay_referrers(state, rec, tiers)
    rec["sale_proceeds"] = int(rec.get("sale_proceeds") or 0) + spent - paid

    erc20.safe_transfer(state, token=rec["token"], sender=rec["address"], to=buyer, amount=amount)
    _refund(state, rec, buyer, value - spent)

    emit_event(state, rec["address"], "SaleOrder", buyer=buyer, amount=amount)
    return {"applied": "PLATFORM_BUY", "amount": amount, "spent": spent, "refund": value - spent}


def _apply_register(state: Json, rec: Json, env: TxEnvelope) -> Json:
    referrer = as_str(as_dict(env.payload).get("referrer")) or None
    return referral.register(state, rec, env.signer, referrer)


# ----------------------------
# Trade round
# ----------------------------


def _apply_put_order(state: Json, rec: Json, env: TxEnvelope) -> Json:
    _require_active_round(state, rec, ROUND_TRADE)
    payload = as_dict(env.payload)
    amount = req_uint(payload, "amount")
    price = req_uint(payload, "price")
    owner = norm_addr(env.signer)

    if amount == 0:
        raise ApplyError("zero_amount", "Amount can't be 0", {})
    if _unit_price(rec, price) == 0:
        raise ApplyError("price_too_low", "Price is too low", {"price": price})
    balance = erc20.balance_of(state, token=rec["token"], account=owner)
    if balance < amount:
        raise ApplyError("insufficient_balance", "Not enough balance", {"balance": balance, "amount": amount})
    allowed = erc20.allowance(state, token=rec["token"], owner=owner, spender=rec["address"])
    if allowed < amount:
        raise ApplyError("insufficient_allowance", "Not enough allowance", {"allowance": allowed, "amount": amount})

    erc20.safe_transfer_from(
        state, token=rec["token"], spender=rec["address"], src=owner, to=rec["address"], amount=amount
    )

    order_id = int(rec.get("next_order_id") or 0)
    rec["next_order_id"] = order_id + 1
    rec.setdefault("orders", {})[str(order_id)] = {
        "id": order_id,
        "owner": owner,
        "amount": amount,
        "price": price,
        "active": True,
        "round": int(rec["round_index"]),
    }
    emit_event(state, rec["address"], "PutOrder", id=order_id, owner=owner, amount=amount, price=price)
    return {"applied": "PLATFORM_PUT_ORDER", "order_id": order_id}


def _apply_cancel_order(state: Json, rec: Json, env: TxEnvelope) -> Json:
    _require_active_round(state, rec, ROUND_TRADE)
    order_id = req_uint(as_dict(env.payload), "order_id")
    o = _order(rec, order_id)
    caller = norm_addr(env.signer)
    if caller != o["owner"]:
        raise ApplyError("not_owner", "Not the order owner", {"order_id": order_id, "caller": caller})

    remaining = int(o["amount"])
    o["active"] = False
    o["amount"] = 0
    if remaining:
        erc20.safe_transfer(state, token=rec["token"], sender=rec["address"], to=caller, amount=remaining)

    emit_event(state, rec["address"], "CancelOrder", id=order_id)
    return {"applied": "PLATFORM_CANCEL_ORDER", "order_id": order_id, "returned": remaining}


def _apply_redeem_order(state: Json, rec: Json, env: TxEnvelope) -> Json:
    _require_active_round(state, rec, ROUND_TRADE)
    order_id = req_uint(as_dict(env.payload), "order_id")
    o = _order(rec, order_id)
    redeemer = norm_addr(env.signer)
    value = int(env.value)

    unit = _unit_price(rec, o["price"])
    if value // unit == 0:
        raise ApplyError("insufficient_value", "Too low msg.value", {"value": value, "unit_price": unit})

    bought = min(int(o["amount"]), value // unit)
    spent = bought * unit
    o["amount"] = int(o["amount"]) - bought
    if o["amount"] == 0:
        o["active"] = False
    rec["trade_volume"] = int(rec["trade_volume"]) + spent

    erc20.safe_transfer(state, token=rec["token"], sender=rec["address"], to=redeemer, amount=bought)

    fee = spent * int(rec["referrer_trade_fee"]) // 100
    first, second = referral.upline(rec, o["owner"])
    unpaid = _pay_referrers(state, rec, [(first, fee), (second, fee)])
    rec["treasury"] = int(rec.get("treasury") or 0) + unpaid

    proceeds = spent - 2 * fee
    if proceeds > 0:
        transfer_native(state, rec["address"], o["owner"], proceeds)
    _refund(state, rec, redeemer, value - spent)

    emit_event(state, rec["address"], "TradeOrder", id=order_id, redeemer=redeemer, amount=bought)
    return {"applied": "PLATFORM_REDEEM_ORDER", "order_id": order_id, "amount": bought, "spent": spent}


# ----------------------------
# Governance / admin
# ----------------------------


def _apply_spend_fees(state: Json, rec: Json, env: TxEnvelope) -> Json:
    if norm_addr(env.signer) != rec["dao"]:
        raise ApplyError("not_dao", "Caller is not the DAO", {"caller": norm_addr(env.signer)})
    send_to_owner = as_bool(as_dict(env.payload).get("send_to_owner"))
    amount = int(rec.get("treasury") or 0)
    if amount == 0:
        return {"applied": "PLATFORM_SPEND_FEES", "amount": 0, "burned": 0}

    rec["treasury"] = 0
    if send_to_owner:
        transfer_native(state, rec["address"], rec["owner"], amount)
        return {"applied": "PLATFORM_SPEND_FEES", "amount": amount, "sent_to": rec["owner"]}

    weth = view(state, to=rec["router"], tx_type="ROUTER_WETH")["weth"]
    out = call(
        state,
        sender=rec["address"],
        to=rec["router"],
        tx_type="ROUTER_SWAP_EXACT_ETH_FOR_TOKENS",
        payload={
            "amount_out_min": 0,
            "path": [weth, rec["reward_token"]],
            "to": rec["address"],
            "deadline": now(state) + SWAP_DEADLINE_SLACK_S,
        },
        value=amount,
    )
    burned = int(out["amounts"][-1])
    if burned:
        erc20.burn(state, token=rec["reward_token"], holder=rec["address"], amount=burned)
    return {"applied": "PLATFORM_SPEND_FEES", "amount": amount, "burned": burned}


def _apply_withdraw_sale_proceeds(state: Json, rec: Json, env: TxEnvelope) -> Json:
    require_owner(rec, env)
    to = norm_addr(as_dict(env.payload).get("to"))
    if is_zero_address(to):
        to = rec["owner"]
    amount = int(rec.get("sale_proceeds") or 0)
    if amount == 0:
        return {"applied": "PLATFORM_WITHDRAW_SALE_PROCEEDS", "amount": 0}

    rec["sale_proceeds"] = 0
    transfer_native(state, rec["address"], to, amount)
    emit_event(state, rec["address"], "SaleProceedsWithdrawn", to=to, amount=amount)
    return {"applied": "PLATFORM_WITHDRAW_SALE_PROCEEDS", "amount": amount, "sent_to": to}


def _apply_set_round_duration(state: Json, rec: Json, env: TxEnvelope) -> Json:
    require_owner(rec, env)
    d = req_uint(as_dict(env.payload), "duration")
    _validate_duration(d)
    rec["round_duration"] = d
    return {"applied": "PLATFORM_SET_ROUND_DURATION", "duration": d}


def _apply_set_first_referrer_sale_fee(state: Json, rec: Json, env: TxEnvelope) -> Json:
    require_owner(rec, env)
    fee = req_uint(as_dict(env.payload), "fee")
    _validate_sale_fees(fee, int(rec["second_referrer_sale_fee"]))
    rec["first_referrer_sale_fee"] = fee
    return {"applied": "PLATFORM_SET_FIRST_REFERRER_SALE_FEE", "fee": fee}


def _apply_set_second_referrer_sale_fee(state: Json, rec: Json, env: TxEnvelope) -> Json:
    require_owner(rec, env)
    fee = req_uint(as_dict(env.payload), "fee")
    _validate_sale_fees(int(rec["first_referrer_sale_fee"]), fee)
    rec["second_referrer_sale_fee"] = fee
    return {"applied": "PLATFORM_SET_SECOND_REFERRER_SALE_FEE", "fee": fee}


def _apply_set_referrer_trade_fee(state: Json, rec: Json, env: TxEnvelope) -> Json:
    require_owner(rec, env)
    fee = req_uint(as_dict(env.payload), "fee")
    _validate_trade_fee(fee)
    rec["referrer_trade_fee"] = fee
    return {"applied": "PLATFORM_SET_REFERRER_TRADE_FEE", "fee": fee}


def _apply_transfer_ownership(state: Json, rec: Json, env: TxEnvelope) -> Json:
    return transfer_ownership(state, rec, env)


_PLATFORM_HANDLERS: Dict[str, Handler] = {
    "PLATFORM_INIT": _apply_init,
    "PLATFORM_START_TRADE_ROUND": _apply_start_trade_round,
    "PLATFORM_START_SALE_ROUND": _apply_start_sale_round,
    "PLATFORM_BUY": _apply_buy,
    "PLATFORM_REGISTER": _apply_register,
    "PLATFORM_PUT_ORDER": _apply_put_order,
    "PLATFORM_CANCEL_ORDER": _apply_cancel_order,
    "PLATFORM_REDEEM_ORDER": _apply_redeem_order,
    "PLATFORM_SPEND_FEES": _apply_spend_fees,
    "PLATFORM_WITHDRAW_SALE_PROCEEDS": _apply_withdraw_sale_proceeds,
    "PLATFORM_SET_ROUND_DURATION": _apply_set_round_duration,
    "PLATFORM_SET_FIRST_REFERRER_SALE_FEE": _apply_set_first_referrer_sale_fee,
    "PLATFORM_SET_SECOND_REFERRER_SALE_FEE": _apply_set_second_referrer_sale_fee,
    "PLATFORM_SET_REFERRER_TRADE_FEE": _apply_set_referrer_trade_fee,
    "PLATFORM_TRANSFER_OWNERSHIP": _apply_transfer_ownership,
}


# ----------------------------
# Views
# ----------------------------


def _view_round(state: Json, rec: Json, env: TxEnvelope) -> Json:
    return {
        "initialized": bool(rec.get("initialized")),
        "round": rec["round"],
        "round_index": int(rec["round_index"]),
        "round_end": int(rec["round_end"]),
        "token_price": int(rec["token_price"]),
        "tokens_issued": int(rec["tokens_issued"]),
        "tokens_sold": int(rec["tokens_sold"]),
        "trade_volume": int(rec["trade_volume"]),
        "treasury": int(rec.get("treasury") or 0),
        "sale_proceeds": int(rec.get("sale_proceeds") or 0),
    }


def _view_order(state: Json, rec: Json, env: TxEnvelope) -> Json:
    order_id = req_uint(as_dict(env.payload), "order_id")
    o = as_dict(rec.get("orders")).get(str(order_id))
    if not isinstance(o, dict):
        raise ApplyError("order_not_found", "Order does not exist", {"order_id": order_id})
    return {"order": dict(o)}


def _view_order_amount(state: Json, rec: Json, env: TxEnvelope) -> Json:
    order_id = req_uint(as_dict(env.payload), "order_id")
    o = as_dict(as_dict(rec.get("orders")).get(str(order_id)))
    return {"amount": int(o.get("amount") or 0)}


def _view_referral(state: Json, rec: Json, env: TxEnvelope) -> Json:
    account = req_addr(as_dict(env.payload), "account")
    out = referral.lookup(rec, account)
    first, second = referral.upline(rec, account)
    out["second_referrer"] = second if first else None
    return out


_PLATFORM_VIEWS: Dict[str, Handler] = {
    "PLATFORM_ROUND": _view_round,
    "PLATFORM_ORDER": _view_order,
    "PLATFORM_ORDER_AMOUNT": _view_order_amount,
    "PLATFORM_REFERRAL": _view_referral,
}


def apply_platform(state: Json, env: TxEnvelope) -> Optional[Json]:
    fn = _PLATFORM_HANDLERS.get(as_str(env.tx_type).upper())
    if fn is None:
        return None
    return fn(state, contract_at(state, env.to, KIND_PLATFORM), env)


def view_platform(state: Json, env: TxEnvelope) -> Optional[Json]:
    fn = _PLATFORM_VIEWS.get(as_str(env.tx_type).upper())
    if fn is None:
        return None
    return fn(state, contract_at(state, env.to, KIND_PLATFORM), env)
