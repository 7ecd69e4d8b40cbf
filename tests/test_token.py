from __future__ import annotations

import pytest

from acdm.ledger.constants import ZERO_ADDRESS
from acdm.runtime.apply.token import deploy_token
from acdm.runtime.calls import call, view
from acdm.runtime.errors import ApplyError
from acdm.runtime.state_invariants import ensure_state

OWNER = "0x" + "11" * 20
ALICE = "0x" + "22" * 20
BOB = "0x" + "33" * 20


def _fresh(initial_supply: int = 1_000):
    st = ensure_state({"time": 1})
    tok = deploy_token(st, deployer=OWNER, name="Test", symbol="TST", decimals=6, initial_supply=initial_supply)
    return st, tok


def _balance(st, tok, who) -> int:
    return view(st, to=tok, tx_type="TOKEN_BALANCE_OF", payload={"account": who})["balance"]


def test_initial_supply_is_credited_to_deployer() -> None:
    st, tok = _fresh()
    assert _balance(st, tok, OWNER) == 1_000
    assert view(st, to=tok, tx_type="TOKEN_TOTAL_SUPPLY")["total_supply"] == 1_000
    assert view(st, to=tok, tx_type="TOKEN_DECIMALS")["decimals"] == 6

    ev = st["events"][-1]
    assert ev["event"] == "Transfer"
    assert ev["args"] == {"from": ZERO_ADDRESS, "to": OWNER, "value": 1_000}


def test_transfer_moves_balance_and_reports_shortfall_as_false() -> None:
    st, tok = _fresh()
    assert call(st, sender=OWNER, to=tok, tx_type="TOKEN_TRANSFER", payload={"to": ALICE, "amount": 400}) == {
        "success": True
    }
    assert _balance(st, tok, OWNER) == 600
    assert _balance(st, tok, ALICE) == 400

    out = call(st, sender=ALICE, to=tok, tx_type="TOKEN_TRANSFER", payload={"to": BOB, "amount": 401})
    assert out == {"success": False}
    assert _balance(st, tok, ALICE) == 400
    assert _balance(st, tok, BOB) == 0


def test_transfer_to_zero_address_is_refused() -> None:
    st, tok = _fresh()
    out = call(st, sender=OWNER, to=tok, tx_type="TOKEN_TRANSFER", payload={"to": ZERO_ADDRESS, "amount": 1})
    assert out == {"success": False}


def test_transfer_from_spends_allowance() -> None:
    st, tok = _fresh()
    call(st, sender=OWNER, to=tok, tx_type="TOKEN_APPROVE", payload={"spender": ALICE, "amount": 300})

    out = call(
        st, sender=ALICE, to=tok, tx_type="TOKEN_TRANSFER_FROM", payload={"from": OWNER, "to": BOB, "amount": 200}
    )
    assert out["success"] is True
    assert _balance(st, tok, BOB) == 200
    allowance = view(st, to=tok, tx_type="TOKEN_ALLOWANCE", payload={"owner": OWNER, "spender": ALICE})
    assert allowance["allowance"] == 100

    out = call(
        st, sender=ALICE, to=tok, tx_type="TOKEN_TRANSFER_FROM", payload={"from": OWNER, "to": BOB, "amount": 101}
    )
    assert out["success"] is False
    assert _balance(st, tok, BOB) == 200


def test_only_minter_can_mint_and_minter_is_set_once() -> None:
    st, tok = _fresh(initial_supply=0)

    with pytest.raises(ApplyError) as e:
        call(st, sender=OWNER, to=tok, tx_type="TOKEN_MINT", payload={"to": ALICE, "amount": 5})
    assert e.value.code == "not_minter"

    with pytest.raises(ApplyError) as e:
        call(st, sender=ALICE, to=tok, tx_type="TOKEN_SET_MINTER", payload={"minter": ALICE})
    assert e.value.code == "not_owner"

    call(st, sender=OWNER, to=tok, tx_type="TOKEN_SET_MINTER", payload={"minter": ALICE})
    call(st, sender=ALICE, to=tok, tx_type="TOKEN_MINT", payload={"to": BOB, "amount": 5})
    assert _balance(st, tok, BOB) == 5
    assert view(st, to=tok, tx_type="TOKEN_TOTAL_SUPPLY")["total_supply"] == 5

    with pytest.raises(ApplyError) as e:
        call(st, sender=OWNER, to=tok, tx_type="TOKEN_SET_MINTER", payload={"minter": BOB})
    assert e.value.code == "already_initialized"


def test_burn_reduces_supply_and_fails_beyond_balance() -> None:
    st, tok = _fresh()
    call(st, sender=OWNER, to=tok, tx_type="TOKEN_BURN", payload={"amount": 250})
    assert _balance(st, tok, OWNER) == 750
    assert view(st, to=tok, tx_type="TOKEN_TOTAL_SUPPLY")["total_supply"] == 750

    with pytest.raises(ApplyError) as e:
        call(st, sender=OWNER, to=tok, tx_type="TOKEN_BURN", payload={"amount": 751})
    assert e.value.code == "burn_exceeds_balance"
    assert e.value.reason == "ERC20: burn amount exceeds balance"


def test_transfer_ownership_rejects_zero_address() -> None:
    st, tok = _fresh()
    with pytest.raises(ApplyError) as e:
        call(st, sender=OWNER, to=tok, tx_type="TOKEN_TRANSFER_OWNERSHIP", payload={"new_owner": ZERO_ADDRESS})
    assert e.value.code == "zero_address"

    call(st, sender=OWNER, to=tok, tx_type="TOKEN_TRANSFER_OWNERSHIP", payload={"new_owner": ALICE})
    assert st["contracts"][tok]["owner"] == ALICE
