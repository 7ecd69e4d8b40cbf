# src/acdm/runtime/apply/staking.py
"""Staking ledger.

Accounts lock the staking token (the XXX/ETH LP token in a standard
deployment) and earn a flat percentage of their balance in the reward token
once per elapsed reward period. Stake weight drives DAO voting, so an account
with an open vote cannot withdraw. The withdrawal timeout is governed by the
DAO; the reward schedule by the owner.

Per-account record::

    {"balance": int, "reward_accrued": int, "last_claim": int}

``last_claim`` is refreshed by every stake and claim and gates both the next
reward and unstaking.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from acdm.ledger.constants import KIND_STAKING
from acdm.ledger.state import contract_at, deploy_contract, emit_event, is_zero_address, norm_addr, now
from acdm.runtime import erc20
from acdm.runtime.apply.ownable import require_owner, transfer_ownership
from acdm.runtime.calls import view
from acdm.runtime.errors import ApplyError
from acdm.runtime.payload import as_dict, as_str, req_addr, req_uint
from acdm.runtime.runtime_logging import log_event
from acdm.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]
Handler = Callable[[Json, Json, TxEnvelope], Json]

log = logging.getLogger("acdm.staking")

PAYABLE_TX_TYPES: frozenset[str] = frozenset()


def _validate_percentage(p: int) -> None:
    if p == 0:
        raise ApplyError("invalid_percentage", "Percentage can not be 0", {"percentage": p})
    if p > 100:
        raise ApplyError("invalid_percentage", "Percentage can not exceed 100%", {"percentage": p})


def _validate_period(p: int) -> None:
    if p == 0:
        raise ApplyError("invalid_period", "Reward period can not be zero", {"period": p})


def deploy_staking(
    state: Json,
    *,
    deployer: str,
    staking_token: str,
    reward_token: str,
    reward_percentage: int,
    reward_period: int,
    withdrawal_timeout: int,
    dao: str,
) -> str:
    _validate_percentage(int(reward_percentage))
    _validate_period(int(reward_period))
    for name, a in (("staking_token", staking_token), ("reward_token", reward_token), ("dao", dao)):
        if is_zero_address(a):
            raise ApplyError("zero_address", "Address is zero", {"field": name})
    return deploy_contract(
        state,
        deployer=deployer,
        kind=KIND_STAKING,
        record={
            "owner": norm_addr(deployer),
            "dao": norm_addr(dao),
            "staking_token": norm_addr(staking_token),
            "reward_token": norm_addr(reward_token),
            "reward_percentage": int(reward_percentage),
            "reward_period": int(reward_period),
            "withdrawal_timeout": int(withdrawal_timeout),
            "total_stake": 0,
            "stakes": {},
        },
    )


def _stake_rec(rec: Json, account: str) -> Json:
    stakes = rec.setdefault("stakes", {})
    a = norm_addr(account)
    s = stakes.get(a)
    if not isinstance(s, dict):
        s = {"balance": 0, "reward_accrued": 0, "last_claim": 0}
        stakes[a] = s
    return s


def _period_reward(rec: Json, s: Json, t: int) -> int:
    """One period's reward on the current balance, or 0 if the period has not elapsed."""
    balance = int(s.get("balance") or 0)
    if balance <= 0 or t < int(s.get("last_claim") or 0) + int(rec["reward_period"]):
        return 0
    return balance * int(rec["reward_percentage"]) // 100


def _apply_stake(state: Json, rec: Json, env: TxEnvelope) -> Json:
    amount = req_uint(as_dict(env.payload), "amount")
    if amount == 0:
        raise ApplyError("zero_amount", "Amount can't be 0", {})
    account = norm_addr(env.signer)

    erc20.safe_transfer_from(
        state, token=rec["staking_token"], spender=rec["address"], src=account, to=rec["address"], amount=amount
    )

    t = now(state)
    s = _stake_rec(rec, account)
    # Settle the elapsed period on the old balance before the clock restarts.
    s["reward_accrued"] = int(s.get("reward_accrued") or 0) + _period_reward(rec, s, t)
    s["balance"] = int(s.get("balance") or 0) + amount
    s["last_claim"] = t
    rec["total_stake"] = int(rec.get("total_stake") or 0) + amount

    emit_event(state, rec["address"], "Staked", account=account, amount=amount)
    return {"applied": "STAKING_STAKE", "balance": s["balance"]}


def _apply_unstake(state: Json, rec: Json, env: TxEnvelope) -> Json:
    account = norm_addr(env.signer)
    s = _stake_rec(rec, account)
    balance = int(s.get("balance") or 0)
    if balance == 0:
        raise ApplyError("nothing_at_stake", "The caller has nothing at stake", {"account": account})

    t = now(state)
    unlock_at = int(s.get("last_claim") or 0) + int(rec["withdrawal_timeout"])
    if t < unlock_at:
        raise ApplyError("withdrawal_timeout_not_met", "Timeout is not met", {"now": t, "unlock_at": unlock_at})

    participating = view(state, to=rec["dao"], tx_type="DAO_IS_PARTICIPANT", payload={"account": account})
    if bool(participating.get("participant")):
        raise ApplyError(
            "still_participating_in_governance",
            "The caller participates in an active vote",
            {"account": account},
        )

    s["balance"] = 0
    rec["total_stake"] = int(rec.get("total_stake") or 0) - balance
    erc20.safe_transfer(state, token=rec["staking_token"], sender=rec["address"], to=account, amount=balance)

    emit_event(state, rec["address"], "Unstaked", account=account, amount=balance)
    return {"applied": "STAKING_UNSTAKE", "amount": balance}


def _apply_claim(state: Json, rec: Json, env: TxEnvelope) -> Json:
    account = norm_addr(env.signer)
    s = _stake_rec(rec, account)
    t = now(state)

    reward = int(s.get("reward_accrued") or 0) + _period_reward(rec, s, t)
    if reward == 0:
        raise ApplyError("no_reward", "No reward for the caller", {"account": account})

    s["reward_accrued"] = 0
    s["last_claim"] = t
    erc20.safe_transfer(state, token=rec["reward_token"], sender=rec["address"], to=account, amount=reward)

    emit_event(state, rec["address"], "Claimed", account=account, amount=reward)
    return {"applied": "STAKING_CLAIM", "reward": reward}


def _apply_set_reward_percentage(state: Json, rec: Json, env: TxEnvelope) -> Json:
    require_owner(rec, env)
    p = req_uint(as_dict(env.payload), "percentage")
    _validate_percentage(p)
    rec["reward_percentage"] = p
    return {"applied": "STAKING_SET_REWARD_PERCENTAGE", "percentage": p}


def _apply_set_reward_period(state: Json, rec: Json, env: TxEnvelope) -> Json:
    require_owner(rec, env)
    p = req_uint(as_dict(env.payload), "period")
    _validate_period(p)
    rec["reward_period"] = p
    return {"applied": "STAKING_SET_REWARD_PERIOD", "period": p}


def _apply_set_withdrawal_timeout(state: Json, rec: Json, env: TxEnvelope) -> Json:
    if norm_addr(env.signer) != rec["dao"]:
        raise ApplyError("not_dao", "Caller is not the DAO", {"caller": norm_addr(env.signer)})
    timeout = req_uint(as_dict(env.payload), "timeout")
    previous = int(rec.get("withdrawal_timeout") or 0)
    rec["withdrawal_timeout"] = timeout
    log_event(log, "staking_withdrawal_timeout_changed", contract=rec["address"], previous=previous, timeout=timeout)
    return {"applied": "STAKING_SET_WITHDRAWAL_TIMEOUT", "timeout": timeout}


def _apply_transfer_ownership(state: Json, rec: Json, env: TxEnvelope) -> Json:
    return transfer_ownership(state, rec, env)


_STAKING_HANDLERS: Dict[str, Handler] = {
    "STAKING_STAKE": _apply_stake,
    "STAKING_UNSTAKE": _apply_unstake,
    "STAKING_CLAIM": _apply_claim,
    "STAKING_SET_REWARD_PERCENTAGE": _apply_set_reward_percentage,
    "STAKING_SET_REWARD_PERIOD": _apply_set_reward_period,
    "STAKING_SET_WITHDRAWAL_TIMEOUT": _apply_set_withdrawal_timeout,
    "STAKING_TRANSFER_OWNERSHIP": _apply_transfer_ownership,
}


def _view_get_stake(state: Json, rec: Json, env: TxEnvelope) -> Json:
    account = req_addr(as_dict(env.payload), "account")
    s = as_dict(as_dict(rec.get("stakes")).get(account))
    return {"stake": int(s.get("balance") or 0)}


def _view_total_stake(state: Json, rec: Json, env: TxEnvelope) -> Json:
    return {"total_stake": int(rec.get("total_stake") or 0)}


def _view_stake_record(state: Json, rec: Json, env: TxEnvelope) -> Json:
    account = req_addr(as_dict(env.payload), "account")
    s = as_dict(as_dict(rec.get("stakes")).get(account))
    return {
        "account": account,
        "balance": int(s.get("balance") or 0),
        "reward_accrued": int(s.get("reward_accrued") or 0),
        "last_claim": int(s.get("last_claim") or 0),
    }


_STAKING_VIEWS: Dict[str, Handler] = {
    "STAKING_GET_STAKE": _view_get_stake,
    "STAKING_TOTAL_STAKE": _view_total_stake,
    "STAKING_STAKE_RECORD": _view_stake_record,
}


def apply_staking(state: Json, env: TxEnvelope) -> Optional[Json]:
    fn = _STAKING_HANDLERS.get(as_str(env.tx_type).upper())
    if fn is None:
        return None
    return fn(state, contract_at(state, env.to, KIND_STAKING), env)


def view_staking(state: Json, env: TxEnvelope) -> Optional[Json]:
    fn = _STAKING_VIEWS.get(as_str(env.tx_type).upper())
    if fn is None:
        return None
    return fn(state, contract_at(state, env.to, KIND_STAKING), env)
