# src/acdm/runtime/apply/dao.py
"""DAO governance engine.

The chairman files proposals, each an opaque encoded call against a target
contract. Stakeholders vote with their current stake weight. After the
debating period anyone may finish a proposal; if it passes, the call is
forwarded with the DAO as the caller.

Resolution order:
  1) quorum: (for + against) * 100 >= minimum_quorum * live total stake
  2) at least one vote
  3) for > against
  4) forwarded call succeeds

The forwarded call runs contained (runtime.calls.try_call): its failure is
recorded as an outcome and the resolution still commits.

Lifecycle: the DAO is deployed uninitialized and refuses every mutating call
except DAO_INIT until the owner binds the staking ledger.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from acdm.ledger.constants import KIND_DAO
from acdm.ledger.state import contract_at, deploy_contract, emit_event, is_contract, is_zero_address, norm_addr, now
from acdm.runtime.apply.ownable import require_owner, transfer_ownership
from acdm.runtime.calls import decode_call, try_call, view
from acdm.runtime.errors import ApplyError
from acdm.runtime.payload import as_bool, as_dict, as_str, req_addr, req_uint
from acdm.runtime.runtime_logging import log_event
from acdm.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]
Handler = Callable[[Json, Json, TxEnvelope], Json]

log = logging.getLogger("acdm.dao")

PAYABLE_TX_TYPES: frozenset[str] = frozenset()

OUTCOME_PASSED = "passed"
OUTCOME_REJECTED = "rejected"
REASON_NO_QUORUM = "Minimum quorum is not reached"
REASON_NO_VOTES = "No votes for proposal"
REASON_CALL_FAILED = "Function call failed"


def _validate_quorum(q: int) -> None:
    if q > 100:
        raise ApplyError("invalid_quorum", "Minimum quorum can not be > 100", {"quorum": q})


def deploy_dao(state: Json, *, deployer: str, chairman: str, minimum_quorum: int, debating_period: int) -> str:
    _validate_quorum(int(minimum_quorum))
    if is_zero_address(chairman):
        raise ApplyError("zero_address", "Should not be zero address", {"field": "chairman"})
    return deploy_contract(
        state,
        deployer=deployer,
        kind=KIND_DAO,
        record={
            "owner": norm_addr(deployer),
            "chairman": norm_addr(chairman),
            "minimum_quorum": int(minimum_quorum),
            "debating_period": int(debating_period),
            "staking": "",
            "next_proposal_id": 0,
            "proposals": {},
            # account -> latest deadline among proposals the account voted on
            "vote_locks": {},
        },
    )


def _require_initialized(rec: Json) -> None:
    if not as_str(rec.get("staking")):
        raise ApplyError("not_initialized", "Not initialized", {"contract": rec.get("address")})


def _require_chairman(rec: Json, env: TxEnvelope) -> None:
    if norm_addr(env.signer) != rec["chairman"]:
        raise ApplyError("not_chairman", "Not a chairman", {"caller": norm_addr(env.signer)})


def _proposal(rec: Json, payload: Json) -> Json:
    pid = req_uint(payload, "proposal_id")
    p = as_dict(rec.get("proposals")).get(str(pid))
    if not isinstance(p, dict):
        raise ApplyError("proposal_not_found", "Proposal not found", {"proposal_id": pid})
    return p


def _apply_init(state: Json, rec: Json, env: TxEnvelope) -> Json:
    require_owner(rec, env)
    if as_str(rec.get("staking")):
        raise ApplyError("already_initialized", "Already initialized", {"staking": rec["staking"]})
    staking = norm_addr(as_dict(env.payload).get("staking"))
    if is_zero_address(staking):
        raise ApplyError("zero_address", "Address is zero", {"field": "staking"})
    rec["staking"] = staking
    return {"applied": "DAO_INIT", "staking": staking}


def _apply_add_proposal(state: Json, rec: Json, env: TxEnvelope) -> Json:
    _require_initialized(rec)
    _require_chairman(rec, env)
    payload = as_dict(env.payload)
    target = req_addr(payload, "target")
    if not is_contract(state, target):
        raise ApplyError("recipient_not_contract", "Recipient is not a contract", {"target": target})

    pid = int(rec.get("next_proposal_id") or 0)
    rec["next_proposal_id"] = pid + 1
    deadline = now(state) + int(rec["debating_period"])
    description = str(payload.get("description") or "")
    rec.setdefault("proposals", {})[str(pid)] = {
        "id": pid,
        "call_data": str(payload.get("call_data") or ""),
        "target": target,
        "description": description,
        "votes_for": 0,
        "votes_against": 0,
        "deadline": deadline,
        "finished": False,
        "outcome": None,
        "voters": {},
    }
    emit_event(state, rec["address"], "ProposalCreated", proposal_id=pid, target=target, description=description)
    return {"applied": "DAO_ADD_PROPOSAL", "proposal_id": pid, "deadline": deadline}


def _apply_vote(state: Json, rec: Json, env: TxEnvelope) -> Json:
    _require_initialized(rec)
    payload = as_dict(env.payload)
    p = _proposal(rec, payload)
    t = now(state)
    if bool(p.get("finished")) or t >= int(p["deadline"]):
        raise ApplyError("proposal_finished", "Proposal is finished", {"proposal_id": p["id"]})

    voter = norm_addr(env.signer)
    weight = int(view(state, to=rec["staking"], tx_type="STAKING_GET_STAKE", payload={"account": voter})["stake"])
    if weight == 0:
        raise ApplyError("not_a_stakeholder", "Not a stakeholder", {"account": voter})
    voters = p.setdefault("voters", {})
    if voter in voters:
        raise ApplyError("already_voted", "Already voted", {"proposal_id": p["id"], "account": voter})

    support = as_bool(payload.get("support"))
    if support:
        p["votes_for"] = int(p.get("votes_for") or 0) + weight
    else:
        p["votes_against"] = int(p.get("votes_against") or 0) + weight
    voters[voter] = {"support": support, "weight": weight}

    locks = rec.setdefault("vote_locks", {})
    locks[voter] = max(int(locks.get(voter, 0) or 0), int(p["deadline"]))

    emit_event(state, rec["address"], "Voted", proposal_id=p["id"], voter=voter, support=support, weight=weight)
    return {"applied": "DAO_VOTE", "proposal_id": p["id"], "weight": weight}


def _forward(state: Json, dao_addr: str, p: Json) -> bool:
    try:
        tx_type, call_payload = decode_call(p["call_data"])
    except ApplyError as e:
        log_event(log, "dao_call_undecodable", proposal_id=p["id"], code=e.code, reason=e.reason)
        return False

    ok, res = try_call(state, sender=dao_addr, to=p["target"], tx_type=tx_type, payload=call_payload)
    if not ok:
        log_event(
            log,
            "dao_call_failed",
            proposal_id=p["id"],
            target=p["target"],
            tx_type=tx_type,
            code=res.code,
            reason=res.reason,
        )
    return ok


def _apply_finish_proposal(state: Json, rec: Json, env: TxEnvelope) -> Json:
    _require_initialized(rec)
    p = _proposal(rec, as_dict(env.payload))
    if bool(p.get("finished")):
        raise ApplyError("proposal_finished", "Proposal is finished", {"proposal_id": p["id"]})
    t = now(state)
    if t < int(p["deadline"]):
        raise ApplyError(
            "still_in_progress",
            "Proposal is still in progress",
            {"proposal_id": p["id"], "deadline": p["deadline"], "now": t},
        )

    dao_addr = rec["address"]
    pid = int(p["id"])
    description = p["description"]
    # Marked before the forwarded call so a contained rollback keeps it.
    p["finished"] = True

    votes_for = int(p.get("votes_for") or 0)
    votes_against = int(p.get("votes_against") or 0)
    votes = votes_for + votes_against
    total_stake = int(view(state, to=rec["staking"], tx_type="STAKING_TOTAL_STAKE")["total_stake"])

    if votes * 100 < int(rec["minimum_quorum"]) * total_stake:
        outcome = REASON_NO_QUORUM
    elif votes == 0:
        outcome = REASON_NO_VOTES
    elif votes_for <= votes_against:
        outcome = OUTCOME_REJECTED
    elif _forward(state, dao_addr, p):
        outcome = OUTCOME_PASSED
    else:
        outcome = REASON_CALL_FAILED

    # Re-read: a failed forwarded call restores state and invalidates `p`.
    p = contract_at(state, dao_addr, KIND_DAO)["proposals"][str(pid)]
    p["outcome"] = outcome

    if outcome in {OUTCOME_PASSED, OUTCOME_REJECTED}:
        emit_event(
            state, dao_addr, "ProposalFinished", proposal_id=pid, description=description, passed=outcome == OUTCOME_PASSED
        )
    else:
        emit_event(state, dao_addr, "ProposalFailed", proposal_id=pid, description=description, reason=outcome)
    return {"applied": "DAO_FINISH_PROPOSAL", "proposal_id": pid, "outcome": outcome}


def _apply_change_chairman(state: Json, rec: Json, env: TxEnvelope) -> Json:
    _require_initialized(rec)
    _require_chairman(rec, env)
    chairman = norm_addr(as_dict(env.payload).get("chairman"))
    if is_zero_address(chairman):
        raise ApplyError("zero_address", "Should not be zero address", {"field": "chairman"})
    rec["chairman"] = chairman
    return {"applied": "DAO_CHANGE_CHAIRMAN", "chairman": chairman}


def _apply_set_minimum_quorum(state: Json, rec: Json, env: TxEnvelope) -> Json:
    _require_initialized(rec)
    require_owner(rec, env)
    q = req_uint(as_dict(env.payload), "quorum")
    _validate_quorum(q)
    rec["minimum_quorum"] = q
    return {"applied": "DAO_SET_MINIMUM_QUORUM", "quorum": q}


def _apply_set_debating_period(state: Json, rec: Json, env: TxEnvelope) -> Json:
    _require_initialized(rec)
    require_owner(rec, env)
    period = req_uint(as_dict(env.payload), "period")
    if period == 0:
        raise ApplyError("zero_value", "Can't be zero", {"field": "period"})
    rec["debating_period"] = period
    return {"applied": "DAO_SET_DEBATING_PERIOD", "period": period}


def _apply_transfer_ownership(state: Json, rec: Json, env: TxEnvelope) -> Json:
    _require_initialized(rec)
    return transfer_ownership(state, rec, env)


_DAO_HANDLERS: Dict[str, Handler] = {
    "DAO_INIT": _apply_init,
    "DAO_ADD_PROPOSAL": _apply_add_proposal,
    "DAO_VOTE": _apply_vote,
    "DAO_FINISH_PROPOSAL": _apply_finish_proposal,
    "DAO_CHANGE_CHAIRMAN": _apply_change_chairman,
    "DAO_SET_MINIMUM_QUORUM": _apply_set_minimum_quorum,
    "DAO_SET_DEBATING_PERIOD": _apply_set_debating_period,
    "DAO_TRANSFER_OWNERSHIP": _apply_transfer_ownership,
}


def _view_is_participant(state: Json, rec: Json, env: TxEnvelope) -> Json:
    account = req_addr(as_dict(env.payload), "account")
    locked_until = int(as_dict(rec.get("vote_locks")).get(account, 0) or 0)
    return {"participant": now(state) < locked_until}


def _view_proposal(state: Json, rec: Json, env: TxEnvelope) -> Json:
    p = _proposal(rec, as_dict(env.payload))
    return {"proposal": dict(p)}


def _view_description(state: Json, rec: Json, env: TxEnvelope) -> Json:
    return {"description": _proposal(rec, as_dict(env.payload))["description"]}


_DAO_VIEWS: Dict[str, Handler] = {
    "DAO_IS_PARTICIPANT": _view_is_participant,
    "DAO_PROPOSAL": _view_proposal,
    "DAO_DESCRIPTION": _view_description,
}


def apply_dao(state: Json, env: TxEnvelope) -> Optional[Json]:
    fn = _DAO_HANDLERS.get(as_str(env.tx_type).upper())
    if fn is None:
        return None
    return fn(state, contract_at(state, env.to, KIND_DAO), env)


def view_dao(state: Json, env: TxEnvelope) -> Optional[Json]:
    fn = _DAO_VIEWS.get(as_str(env.tx_type).upper())
    if fn is None:
        return None
    return fn(state, contract_at(state, env.to, KIND_DAO), env)
