from __future__ import annotations

import pytest

from acdm.runtime.apply.exchange import get_amount_out
from acdm.runtime.apply.platform import deploy_platform
from acdm.runtime.apply.token import deploy_token
from acdm.runtime.errors import ApplyError

# Default test deployment: 100 whole ACDM (6 decimals) at 10_000_000 wei per
# whole token, i.e. 10 wei per base unit.
UNIT_PRICE = 10
ISSUED = 100 * 10**6


def _round(chain) -> dict:
    return chain.view(chain.platform, "PLATFORM_ROUND")


def _buy(chain, buyer: str, units: int, extra: int = 0) -> dict:
    return chain.send(buyer, chain.platform, "PLATFORM_BUY", value=units * UNIT_PRICE + extra)


def _to_trade_round(chain) -> None:
    chain.sleep(180)
    chain.send(chain.deployer, chain.platform, "PLATFORM_START_TRADE_ROUND")


def _put(chain, owner: str, amount: int, price: int = 10**7) -> int:
    chain.approve(owner, chain.acdm, chain.platform, amount)
    return chain.send(owner, chain.platform, "PLATFORM_PUT_ORDER", {"amount": amount, "price": price})["order_id"]


# ----------------------------
# Rounds
# ----------------------------


def test_deployment_opens_the_first_sale_round(chain) -> None:
    r = _round(chain)
    assert r["initialized"] is True
    assert r["round"] == "SALE"
    assert r["tokens_issued"] == ISSUED
    assert r["token_price"] == 10_000_000
    assert r["round_end"] == chain.state["time"] + 180
    assert chain.tokens(chain.acdm, chain.platform) == ISSUED

    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.platform, "PLATFORM_START_SALE_ROUND")
    assert e.value.code == "wrong_round"
    assert e.value.reason == "Current round is SALE"


def test_trade_round_waits_for_the_deadline_and_burns_unsold_tokens(chain) -> None:
    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.platform, "PLATFORM_START_TRADE_ROUND")
    assert e.value.code == "not_ready_yet"

    chain.sleep(180)
    out = chain.send(chain.alice, chain.platform, "PLATFORM_START_TRADE_ROUND")
    assert out["burned"] == ISSUED
    assert chain.tokens(chain.acdm, chain.platform) == 0
    assert chain.view(chain.acdm, "TOKEN_TOTAL_SUPPLY")["total_supply"] == 0
    assert _round(chain)["round"] == "TRADE"
    assert [e["args"] for e in chain.events("RoundSwitch")] == [{"round": "TRADE"}]

    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.platform, "PLATFORM_START_TRADE_ROUND")
    assert e.value.reason == "Current round is TRADE"


def test_selling_out_ends_the_sale_round_early(chain) -> None:
    _buy(chain, chain.alice, ISSUED)
    out = chain.send(chain.bob, chain.platform, "PLATFORM_START_TRADE_ROUND")
    assert out["burned"] == 0


def test_round_guards(chain) -> None:
    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.platform, "PLATFORM_PUT_ORDER", {"amount": 1, "price": 10**7})
    assert e.value.code == "wrong_round"
    assert e.value.reason == "Not a 'Trade' round"

    chain.sleep(180)
    with pytest.raises(ApplyError) as e:
        _buy(chain, chain.alice, 1)
    assert e.value.code == "round_over"

    chain.send(chain.deployer, chain.platform, "PLATFORM_START_TRADE_ROUND")
    with pytest.raises(ApplyError) as e:
        _buy(chain, chain.alice, 1)
    assert e.value.reason == "Not a 'Sale' round"

    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.platform, "PLATFORM_START_SALE_ROUND")
    assert e.value.code == "deadline_not_met"


def test_new_sale_round_issues_from_trade_volume(chain) -> None:
    volume_units = 50 * 10**6
    _buy(chain, chain.alice, volume_units)
    _to_trade_round(chain)
    oid = _put(chain, chain.alice, volume_units)
    chain.send(chain.bob, chain.platform, "PLATFORM_REDEEM_ORDER", {"order_id": oid}, value=volume_units * UNIT_PRICE)
    assert _round(chain)["trade_volume"] == 5 * 10**8

    chain.sleep(180)
    out = chain.send(chain.carol, chain.platform, "PLATFORM_START_SALE_ROUND")
    # Issuance uses the price of the round that just ended.
    assert out["tokens_issued"] == 50 * 10**6
    assert out["token_price"] == 4_000_010_300_000
    assert chain.tokens(chain.acdm, chain.platform) == 50 * 10**6

    r = _round(chain)
    assert r["round"] == "SALE"
    assert r["tokens_sold"] == 0
    assert r["round_index"] == 2


def test_new_sale_round_without_trades_keeps_the_price(chain) -> None:
    _to_trade_round(chain)
    chain.sleep(180)
    out = chain.send(chain.alice, chain.platform, "PLATFORM_START_SALE_ROUND")
    assert out["tokens_issued"] == 0
    assert out["token_price"] == 10_000_000
    # The unsold first-round inventory was burned, so there is nothing left to sell.
    assert chain.tokens(chain.acdm, chain.platform) == 0
    with pytest.raises(ApplyError) as e:
        _buy(chain, chain.bob, 1)
    assert e.value.code == "no_more_tokens"

    # Nothing to sell, so the next trade round may start at once.
    chain.send(chain.alice, chain.platform, "PLATFORM_START_TRADE_ROUND")
    assert _round(chain)["round"] == "TRADE"


# ----------------------------
# Sale
# ----------------------------


def test_buy_refunds_the_remainder_and_caps_at_inventory(chain) -> None:
    before = chain.eth(chain.alice)
    out = chain.send(chain.alice, chain.platform, "PLATFORM_BUY", value=(ISSUED + 10) * UNIT_PRICE + 5)
    assert out["amount"] == ISSUED
    assert out["refund"] == 10 * UNIT_PRICE + 5
    assert chain.eth(chain.alice) == before - ISSUED * UNIT_PRICE
    assert chain.tokens(chain.acdm, chain.alice) == ISSUED
    assert [e["args"] for e in chain.events("SaleOrder")] == [{"buyer": chain.alice, "amount": ISSUED}]

    with pytest.raises(ApplyError) as e:
        _buy(chain, chain.bob, 1)
    assert e.value.code == "no_more_tokens"


def test_buy_below_unit_price(chain) -> None:
    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.platform, "PLATFORM_BUY", value=UNIT_PRICE - 1)
    assert e.value.code == "insufficient_value"


def test_sale_pays_both_referral_tiers(chain) -> None:
    chain.send(chain.bob, chain.platform, "PLATFORM_REGISTER")
    chain.send(chain.alice, chain.platform, "PLATFORM_REGISTER", {"referrer": chain.bob})
    chain.send(chain.carol, chain.platform, "PLATFORM_REGISTER", {"referrer": chain.alice})
    alice_before, bob_before = chain.eth(chain.alice), chain.eth(chain.bob)

    _buy(chain, chain.carol, 1_000)

    assert chain.eth(chain.alice) == alice_before + 500
    assert chain.eth(chain.bob) == bob_before + 300
    assert [e["args"] for e in chain.events("ReferralPayment")] == [
        {"referrer": chain.alice, "amount": 500},
        {"referrer": chain.bob, "amount": 300},
    ]
    assert _round(chain)["sale_proceeds"] == 10_000 - 800


def test_sale_with_a_single_referrer_keeps_the_second_share(chain) -> None:
    chain.send(chain.bob, chain.platform, "PLATFORM_REGISTER")
    chain.send(chain.alice, chain.platform, "PLATFORM_REGISTER", {"referrer": chain.bob})
    bob_before = chain.eth(chain.bob)

    _buy(chain, chain.alice, 1_000)

    assert chain.eth(chain.bob) == bob_before + 500
    assert _round(chain)["sale_proceeds"] == 10_000 - 500


# ----------------------------
# Referrals
# ----------------------------


def test_registration_rules(chain) -> None:
    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.platform, "PLATFORM_REGISTER", {"referrer": chain.alice})
    assert e.value.code == "self_referral"

    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.platform, "PLATFORM_REGISTER", {"referrer": chain.bob})
    assert e.value.code == "referrer_not_registered"

    chain.send(chain.bob, chain.platform, "PLATFORM_REGISTER")
    chain.send(chain.alice, chain.platform, "PLATFORM_REGISTER", {"referrer": chain.bob})
    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.platform, "PLATFORM_REGISTER")
    assert e.value.code == "already_registered"

    chain.send(chain.carol, chain.platform, "PLATFORM_REGISTER", {"referrer": chain.alice})
    ref = chain.view(chain.platform, "PLATFORM_REFERRAL", {"account": chain.carol})
    assert ref == {
        "account": chain.carol,
        "registered": True,
        "referrer": chain.alice,
        "second_referrer": chain.bob,
    }
    assert chain.events("Registered")[0]["args"] == {"account": chain.bob, "referrer": None}


# ----------------------------
# Orders
# ----------------------------


def test_put_order_takes_tokens_into_custody(chain) -> None:
    _buy(chain, chain.alice, 1_000)
    _to_trade_round(chain)

    oid = _put(chain, chain.alice, 600, price=2 * 10**7)
    assert oid == 0
    assert chain.tokens(chain.acdm, chain.alice) == 400
    assert chain.tokens(chain.acdm, chain.platform) == 600

    order = chain.view(chain.platform, "PLATFORM_ORDER", {"order_id": oid})["order"]
    assert order["owner"] == chain.alice
    assert order["amount"] == 600
    assert order["price"] == 2 * 10**7
    assert order["active"] is True
    (put,) = chain.events("PutOrder")
    assert put["args"] == {"id": 0, "owner": chain.alice, "amount": 600, "price": 2 * 10**7}


def test_put_order_checks(chain) -> None:
    _buy(chain, chain.alice, 1_000)
    _to_trade_round(chain)

    cases = [
        ({"amount": 0, "price": 10**7}, "zero_amount"),
        ({"amount": 1, "price": 999_999}, "price_too_low"),
        ({"amount": 1_001, "price": 10**7}, "insufficient_balance"),
        ({"amount": 1_000, "price": 10**7}, "insufficient_allowance"),
    ]
    for payload, code in cases:
        with pytest.raises(ApplyError) as e:
            chain.send(chain.alice, chain.platform, "PLATFORM_PUT_ORDER", payload)
        assert e.value.code == code


def test_redeem_order_partially_then_fully(chain) -> None:
    _buy(chain, chain.alice, 1_000)
    _to_trade_round(chain)
    oid = _put(chain, chain.alice, 1_000)

    bob_before = chain.eth(chain.bob)
    out = chain.send(chain.bob, chain.platform, "PLATFORM_REDEEM_ORDER", {"order_id": oid}, value=2 * UNIT_PRICE + 3)
    assert out["amount"] == 2
    assert chain.eth(chain.bob) == bob_before - 2 * UNIT_PRICE
    assert chain.tokens(chain.acdm, chain.bob) == 2
    assert chain.view(chain.platform, "PLATFORM_ORDER_AMOUNT", {"order_id": oid}) == {"amount": 998}
    (trade,) = chain.events("TradeOrder")
    assert trade["args"] == {"id": oid, "redeemer": chain.bob, "amount": 2}

    out = chain.send(chain.bob, chain.platform, "PLATFORM_REDEEM_ORDER", {"order_id": oid}, value=10**6)
    assert out["amount"] == 998
    assert chain.view(chain.platform, "PLATFORM_ORDER", {"order_id": oid})["order"]["active"] is False

    with pytest.raises(ApplyError) as e:
        chain.send(chain.bob, chain.platform, "PLATFORM_REDEEM_ORDER", {"order_id": oid}, value=UNIT_PRICE)
    assert e.value.code == "order_not_found"


def test_trade_fees_go_to_the_order_owners_upline(chain) -> None:
    chain.send(chain.dave, chain.platform, "PLATFORM_REGISTER")
    chain.send(chain.carol, chain.platform, "PLATFORM_REGISTER", {"referrer": chain.dave})
    chain.send(chain.alice, chain.platform, "PLATFORM_REGISTER", {"referrer": chain.carol})
    units = 50 * 10**6
    _buy(chain, chain.alice, units)
    _to_trade_round(chain)
    oid = _put(chain, chain.alice, units)

    alice, carol, dave = chain.eth(chain.alice), chain.eth(chain.carol), chain.eth(chain.dave)
    chain.send(chain.bob, chain.platform, "PLATFORM_REDEEM_ORDER", {"order_id": oid}, value=units * UNIT_PRICE)

    spent = units * UNIT_PRICE
    fee = spent * 2 // 100
    assert chain.eth(chain.carol) == carol + fee
    assert chain.eth(chain.dave) == dave + fee
    assert chain.eth(chain.alice) == alice + spent - 2 * fee
    assert _round(chain)["treasury"] == 0


def test_trade_fees_without_referrers_go_to_the_treasury(chain) -> None:
    units = 50 * 10**6
    _buy(chain, chain.alice, units)
    _to_trade_round(chain)
    oid = _put(chain, chain.alice, units)

    alice = chain.eth(chain.alice)
    chain.send(chain.bob, chain.platform, "PLATFORM_REDEEM_ORDER", {"order_id": oid}, value=units * UNIT_PRICE)

    spent = units * UNIT_PRICE
    assert _round(chain)["treasury"] == 2 * (spent * 2 // 100)
    assert chain.eth(chain.alice) == alice + spent - 2 * (spent * 2 // 100)
    assert chain.events("ReferralPayment") == []


def test_cancel_order(chain) -> None:
    _buy(chain, chain.alice, 1_000)
    _to_trade_round(chain)
    oid = _put(chain, chain.alice, 1_000)

    with pytest.raises(ApplyError) as e:
        chain.send(chain.bob, chain.platform, "PLATFORM_CANCEL_ORDER", {"order_id": oid})
    assert e.value.code == "not_owner"

    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.platform, "PLATFORM_CANCEL_ORDER", {"order_id": 99})
    assert e.value.code == "order_not_found"

    out = chain.send(chain.alice, chain.platform, "PLATFORM_CANCEL_ORDER", {"order_id": oid})
    assert out["returned"] == 1_000
    assert chain.tokens(chain.acdm, chain.alice) == 1_000
    assert [e["args"] for e in chain.events("CancelOrder")] == [{"id": oid}]

    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.platform, "PLATFORM_CANCEL_ORDER", {"order_id": oid})
    assert e.value.code == "order_not_found"


# ----------------------------
# Treasury
# ----------------------------


def _fill_treasury(chain) -> int:
    units = 50 * 10**6
    _buy(chain, chain.alice, units)
    _to_trade_round(chain)
    oid = _put(chain, chain.alice, units)
    chain.send(chain.bob, chain.platform, "PLATFORM_REDEEM_ORDER", {"order_id": oid}, value=units * UNIT_PRICE)
    return _round(chain)["treasury"]


def test_spend_fees_is_dao_only(chain) -> None:
    with pytest.raises(ApplyError) as e:
        chain.send(chain.deployer, chain.platform, "PLATFORM_SPEND_FEES", {"send_to_owner": True})
    assert e.value.code == "not_dao"

    assert chain.send(chain.dao, chain.platform, "PLATFORM_SPEND_FEES", {"send_to_owner": True})["amount"] == 0


def test_spend_fees_sends_the_treasury_to_the_owner(chain) -> None:
    treasury = _fill_treasury(chain)
    owner_before = chain.eth(chain.deployer)

    out = chain.send(chain.dao, chain.platform, "PLATFORM_SPEND_FEES", {"send_to_owner": True})
    assert out["amount"] == treasury
    assert chain.eth(chain.deployer) == owner_before + treasury
    assert _round(chain)["treasury"] == 0


def test_spend_fees_buys_back_and_burns_the_reward_token(chain) -> None:
    treasury = _fill_treasury(chain)
    pair = chain.view(chain.router, "ROUTER_PAIR", {"token": chain.xxx})
    expected = get_amount_out(treasury, pair["reserve_eth"], pair["reserve_token"])
    supply_before = chain.view(chain.xxx, "TOKEN_TOTAL_SUPPLY")["total_supply"]

    out = chain.send(chain.dao, chain.platform, "PLATFORM_SPEND_FEES", {"send_to_owner": False})
    assert out["burned"] == expected > 0
    assert chain.tokens(chain.xxx, chain.platform) == 0
    assert chain.view(chain.xxx, "TOKEN_TOTAL_SUPPLY")["total_supply"] == supply_before - expected
    assert _round(chain)["treasury"] == 0


def test_owner_withdraws_sale_proceeds(chain) -> None:
    _buy(chain, chain.alice, 1_000)
    assert _round(chain)["sale_proceeds"] == 10_000

    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.platform, "PLATFORM_WITHDRAW_SALE_PROCEEDS", {"to": chain.alice})
    assert e.value.code == "not_owner"

    platform_before, dave_before = chain.eth(chain.platform), chain.eth(chain.dave)
    out = chain.send(chain.deployer, chain.platform, "PLATFORM_WITHDRAW_SALE_PROCEEDS", {"to": chain.dave})
    assert out["amount"] == 10_000
    assert chain.eth(chain.dave) == dave_before + 10_000
    assert chain.eth(chain.platform) == platform_before - 10_000
    assert _round(chain)["sale_proceeds"] == 0
    assert [e["args"] for e in chain.events("SaleProceedsWithdrawn")] == [{"to": chain.dave, "amount": 10_000}]

    assert chain.send(chain.deployer, chain.platform, "PLATFORM_WITHDRAW_SALE_PROCEEDS")["amount"] == 0


def test_sale_proceeds_withdrawal_leaves_the_treasury_alone(chain) -> None:
    treasury = _fill_treasury(chain)
    proceeds = _round(chain)["sale_proceeds"]
    assert treasury > 0
    owner_before = chain.eth(chain.deployer)

    out = chain.send(chain.deployer, chain.platform, "PLATFORM_WITHDRAW_SALE_PROCEEDS")
    assert out == {"applied": "PLATFORM_WITHDRAW_SALE_PROCEEDS", "amount": proceeds, "sent_to": chain.deployer}
    assert chain.eth(chain.deployer) == owner_before + proceeds
    assert _round(chain)["treasury"] == treasury


# ----------------------------
# Settings and lifecycle
# ----------------------------


def test_fee_and_duration_setters(chain) -> None:
    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, chain.platform, "PLATFORM_SET_ROUND_DURATION", {"duration": 60})
    assert e.value.code == "not_owner"

    with pytest.raises(ApplyError) as e:
        chain.send(chain.deployer, chain.platform, "PLATFORM_SET_FIRST_REFERRER_SALE_FEE", {"fee": 98})
    assert e.value.code == "invalid_fee"

    with pytest.raises(ApplyError) as e:
        chain.send(chain.deployer, chain.platform, "PLATFORM_SET_REFERRER_TRADE_FEE", {"fee": 51})
    assert e.value.code == "invalid_fee"

    with pytest.raises(ApplyError) as e:
        chain.send(chain.deployer, chain.platform, "PLATFORM_SET_ROUND_DURATION", {"duration": 0})
    assert e.value.code == "zero_value"

    chain.send(chain.deployer, chain.platform, "PLATFORM_SET_ROUND_DURATION", {"duration": 60})
    chain.send(chain.deployer, chain.platform, "PLATFORM_SET_FIRST_REFERRER_SALE_FEE", {"fee": 10})
    chain.send(chain.deployer, chain.platform, "PLATFORM_SET_SECOND_REFERRER_SALE_FEE", {"fee": 4})
    chain.send(chain.deployer, chain.platform, "PLATFORM_SET_REFERRER_TRADE_FEE", {"fee": 50})
    rec = chain.contract(chain.platform)
    assert (rec["round_duration"], rec["first_referrer_sale_fee"]) == (60, 10)
    assert (rec["second_referrer_sale_fee"], rec["referrer_trade_fee"]) == (4, 50)


def _fresh_platform(chain) -> tuple[str, str]:
    token = deploy_token(chain.state, deployer=chain.deployer, name="ACADEM Coin", symbol="ACDM", decimals=6)
    platform = deploy_platform(
        chain.state,
        deployer=chain.deployer,
        router=chain.router,
        reward_token=chain.xxx,
        dao=chain.dao,
        round_duration=180,
        first_referrer_sale_fee=5,
        second_referrer_sale_fee=3,
        referrer_trade_fee=2,
    )
    chain.send(chain.deployer, token, "TOKEN_SET_MINTER", {"minter": platform})
    return token, platform


def test_platform_refuses_trading_before_init(chain) -> None:
    token, platform = _fresh_platform(chain)
    with pytest.raises(ApplyError) as e:
        chain.send(chain.alice, platform, "PLATFORM_BUY", value=UNIT_PRICE)
    assert e.value.code == "not_initialized"

    with pytest.raises(ApplyError) as e:
        chain.send(
            chain.deployer,
            platform,
            "PLATFORM_INIT",
            {"token": token, "initial_supply": 10, "initial_price": 999_999},
        )
    assert e.value.code == "price_too_low"

    chain.send(chain.deployer, platform, "PLATFORM_INIT", {"token": token, "initial_supply": 10, "initial_price": 10**6})
    assert chain.tokens(token, platform) == 10 * 10**6

    with pytest.raises(ApplyError) as e:
        chain.send(chain.deployer, platform, "PLATFORM_INIT", {"token": token, "initial_supply": 10, "initial_price": 10**6})
    assert e.value.code == "already_initialized"


def test_custom_platform_parameters(chain_factory) -> None:
    chain = chain_factory(initial_supply=1, initial_price=2 * 10**6, round_duration=60)
    r = _round(chain)
    assert r["tokens_issued"] == 10**6
    assert r["round_end"] == chain.state["time"] + 60

    out = chain.send(chain.alice, chain.platform, "PLATFORM_BUY", value=5)
    assert out == {"applied": "PLATFORM_BUY", "amount": 2, "spent": 4, "refund": 1}
