from __future__ import annotations

import pytest

from acdm.runtime.calls import encode_call
from acdm.runtime.errors import ApplyError


def _fund_and_stake(chain, account: str, amount: int) -> None:
    chain.send(chain.deployer, chain.lp, "TOKEN_TRANSFER", {"to": account, "amount": amount})
    chain.approve(account, chain.lp, chain.staking, amount)
    chain.send(account, chain.staking, "STAKING_STAKE", {"amount": amount})


def test_stake_moves_lp_tokens_into_the_ledger(chain) -> None:
    _fund_and_stake(chain, chain.alice, 1_000)

    assert chain.tokens(chain.lp, chain.alice) == 0
    assert chain.tokens(chain.lp, chain.staking) == 1_000
    assert chain.view(chain.staking, "STAKING_GET_STAKE", {"account": chain.alice}) == {"stake": 1_000}
    assert chain.view(chain.staking, "STAKING_TOTAL_STAKE") == {"total_stake": 1_000}

    rec = chain.view(chain.staking, "STAKING_STAKE_RECORD", {"account": chain.alice})
    assert rec["last_claim"] == chain.state["time"]
    assert [e["args"] for e in chain.events("Staked")] == [{"account": chain.alice, "amount": 1_000}]


def test_stake_rejects_zero_and_unapproved_amounts(chain) -> None:
    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.staking, "STAKING_STAKE", {"amount": 0})
    assert e.value.code == "zero_amount"

    chain.send(chain.deployer, chain.lp, "TOKEN_TRANSFER", {"to": chain.alice, "amount": 1_000})
    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.staking, "STAKING_STAKE", {"amount": 1_000})
    assert e.value.code == "transfer_failed"


def test_claim_pays_once_per_elapsed_period(chain) -> None:
    _fund_and_stake(chain, chain.alice, 1_000)

    chain.sleep(179)
    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.staking, "STAKING_CLAIM")
    assert e.value.code == "no_reward"

    chain.sleep(1)
    out = chain.send(chain.alice, chain.staking, "STAKING_CLAIM")
    assert out["reward"] == 30
    assert chain.tokens(chain.xxx, chain.alice) == 30

    # The clock restarts at the claim.
    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.staking, "STAKING_CLAIM")
    assert e.value.code == "no_reward"


def test_restaking_settles_the_elapsed_period_first(chain) -> None:
    _fund_and_stake(chain, chain.alice, 1_000)
    chain.sleep(200)
    _fund_and_stake(chain, chain.alice, 1_000)

    rec = chain.view(chain.staking, "STAKING_STAKE_RECORD", {"account": chain.alice})
    assert rec["balance"] == 2_000
    assert rec["reward_accrued"] == 30

    out = chain.send(chain.alice, chain.staking, "STAKING_CLAIM")
    assert out["reward"] == 30


def test_unstake_waits_for_the_withdrawal_timeout(chain) -> None:
    _fund_and_stake(chain, chain.alice, 1_000)

    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.staking, "STAKING_UNSTAKE")
    assert e.value.code == "withdrawal_timeout_not_met"

    chain.sleep(180)
    out = chain.send(chain.alice, chain.staking, "STAKING_UNSTAKE")
    assert out["amount"] == 1_000
    assert chain.tokens(chain.lp, chain.alice) == 1_000
    assert chain.view(chain.staking, "STAKING_TOTAL_STAKE") == {"total_stake": 0}

    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.staking, "STAKING_UNSTAKE")
    assert e.value.code == "nothing_at_stake"


def test_unstake_is_locked_while_a_vote_is_open(chain) -> None:
    _fund_and_stake(chain, chain.alice, 1_000)
    chain.sleep(100)
    chain.send(
        chain.deployer,
        chain.dao,
        "DAO_ADD_PROPOSAL",
        {"target": chain.staking, "call_data": encode_call("STAKING_SET_WITHDRAWAL_TIMEOUT", {"timeout": 60})},
    )
    chain.send(chain.alice, chain.dao, "DAO_VOTE", {"proposal_id": 0, "support": True})

    chain.sleep(80)
    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.staking, "STAKING_UNSTAKE")
    assert e.value.code == "still_participating_in_governance"

    chain.sleep(100)
    chain.send(chain.alice, chain.staking, "STAKING_UNSTAKE")
    assert chain.tokens(chain.lp, chain.alice) == 1_000


def test_withdrawal_timeout_is_dao_governed(chain) -> None:
    with pytest.raises(ApplyError) as e:
        chain.send(chain.deployer, chain.staking, "STAKING_SET_WITHDRAWAL_TIMEOUT", {"timeout": 60})
    assert e.value.code == "not_dao"

    chain.send(chain.dao, chain.staking, "STAKING_SET_WITHDRAWAL_TIMEOUT", {"timeout": 60})
    assert chain.contract(chain.staking)["withdrawal_timeout"] == 60


@pytest.mark.parametrize("percentage", [0, 101])
def test_reward_percentage_bounds(chain, percentage: int) -> None:
    with pytest.raises(ApplyError) as e:
        chain.send(chain.deployer, chain.staking, "STAKING_SET_REWARD_PERCENTAGE", {"percentage": percentage})
    assert e.value.code == "invalid_percentage"


def test_reward_schedule_is_owner_only(chain) -> None:
    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.staking, "STAKING_SET_REWARD_PERCENTAGE", {"percentage": 10})
    assert e.value.code == "not_owner"

    with pytest.raises(ApplyError) as e:
        chain.send(chain.deployer, chain.staking, "STAKING_SET_REWARD_PERIOD", {"period": 0})
    assert e.value.code == "invalid_period"

    chain.send(chain.deployer, chain.staking, "STAKING_SET_REWARD_PERCENTAGE", {"percentage": 10})
    chain.send(chain.deployer, chain.staking, "STAKING_SET_REWARD_PERIOD", {"period": 60})
    rec = chain.contract(chain.staking)
    assert rec["reward_percentage"] == 10
    assert rec["reward_period"] == 60


def _total_matches_stakes(chain, stakers) -> int:
    total = chain.view(chain.staking, "STAKING_TOTAL_STAKE")["total_stake"]
    stakes = [chain.view(chain.staking, "STAKING_GET_STAKE", {"account": a})["stake"] for a in stakers]
    assert total == sum(stakes)
    return total


def test_total_stake_tracks_every_account_through_interleaved_actions(chain) -> None:
    stakers = (chain.alice, chain.bob, chain.carol)

    _fund_and_stake(chain, chain.alice, 100)
    assert _total_matches_stakes(chain, stakers) == 100
    _fund_and_stake(chain, chain.bob, 250)
    assert _total_matches_stakes(chain, stakers) == 350

    chain.sleep(100)
    _fund_and_stake(chain, chain.carol, 40)
    assert _total_matches_stakes(chain, stakers) == 390

    chain.sleep(80)
    chain.send(chain.alice, chain.staking, "STAKING_UNSTAKE")
    assert _total_matches_stakes(chain, stakers) == 290

    # Topping up restarts bob's withdrawal clock.
    _fund_and_stake(chain, chain.bob, 50)
    assert _total_matches_stakes(chain, stakers) == 340
    with pytest.raises(ApplyError) as e:
        chain.send(chain.bob, chain.staking, "STAKING_UNSTAKE")
    assert e.value.code == "withdrawal_timeout_not_met"
    assert _total_matches_stakes(chain, stakers) == 340

    chain.sleep(100)
    chain.send(chain.carol, chain.staking, "STAKING_UNSTAKE")
    assert _total_matches_stakes(chain, stakers) == 300
    _fund_and_stake(chain, chain.alice, 30)
    assert _total_matches_stakes(chain, stakers) == 330

    chain.sleep(180)
    chain.send(chain.bob, chain.staking, "STAKING_UNSTAKE")
    assert _total_matches_stakes(chain, stakers) == 30
    chain.send(chain.alice, chain.staking, "STAKING_UNSTAKE")
    assert _total_matches_stakes(chain, stakers) == 0
    assert chain.tokens(chain.lp, chain.staking) == 0


def test_dao_lowered_timeout_applies_from_the_last_stake(chain) -> None:
    _fund_and_stake(chain, chain.alice, 10)
    pid = chain.send(
        chain.deployer,
        chain.dao,
        "DAO_ADD_PROPOSAL",
        {
            "target": chain.staking,
            "call_data": encode_call("STAKING_SET_WITHDRAWAL_TIMEOUT", {"timeout": 1}),
            "description": "One second withdrawal timeout",
        },
    )["proposal_id"]
    chain.send(chain.alice, chain.dao, "DAO_VOTE", {"proposal_id": pid, "support": True})
    chain.sleep(180)
    assert chain.send(chain.bob, chain.dao, "DAO_FINISH_PROPOSAL", {"proposal_id": pid})["outcome"] == "passed"
    assert chain.contract(chain.staking)["withdrawal_timeout"] == 1

    _fund_and_stake(chain, chain.alice, 10)
    rec = chain.view(chain.staking, "STAKING_STAKE_RECORD", {"account": chain.alice})
    assert rec["last_claim"] == chain.state["time"]

    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.staking, "STAKING_UNSTAKE")
    assert e.value.code == "withdrawal_timeout_not_met"

    chain.sleep(1)
    out = chain.send(chain.alice, chain.staking, "STAKING_UNSTAKE")
    assert out["amount"] == 20
    assert chain.view(chain.staking, "STAKING_TOTAL_STAKE") == {"total_stake": 0}
