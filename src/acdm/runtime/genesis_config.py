# src/acdm/runtime/genesis_config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml

from acdm.ledger.state import address_from_pubkey, credit_native, norm_addr

Json = Dict[str, Any]


@dataclass(frozen=True, slots=True)
class GenesisAccount:
    address: str
    pubkey: str = ""
    balance: int = 0


@dataclass(frozen=True, slots=True)
class TokenParams:
    name: str
    symbol: str
    decimals: int
    # Whole tokens, scaled by decimals at deploy time.
    initial_supply: int = 0


@dataclass(frozen=True, slots=True)
class LiquidityParams:
    tokens: int = 100
    eth_wei: int = 100 * 10**13
    slippage_percent: int = 2
    deadline_slack_s: int = 100


@dataclass(frozen=True, slots=True)
class StakingParams:
    reward_percentage: int = 3
    reward_period: int = 180
    withdrawal_timeout: int = 180
    # Whole reward tokens moved from the deployer to fund claims.
    reward_pool: int = 0


@dataclass(frozen=True, slots=True)
class DaoParams:
    minimum_quorum: int = 30
    debating_period: int = 180
    chairman: str = ""


@dataclass(frozen=True, slots=True)
class PlatformParams:
    round_duration: int = 180
    first_referrer_sale_fee: int = 5
    second_referrer_sale_fee: int = 3
    referrer_trade_fee: int = 2
    initial_supply: int = 100_000
    initial_price: int = 10**18


@dataclass(frozen=True, slots=True)
class GenesisConfig:
    chain_id: str
    deployer: GenesisAccount
    accounts: List[GenesisAccount] = field(default_factory=list)
    require_signatures: bool = True
    reward_token: TokenParams = TokenParams(name="XXX Coin", symbol="XXX", decimals=18, initial_supply=1_000)
    acdm_token: TokenParams = TokenParams(name="ACADEM Coin", symbol="ACDM", decimals=6)
    liquidity: LiquidityParams = LiquidityParams()
    staking: StakingParams = StakingParams()
    dao: DaoParams = DaoParams()
    platform: PlatformParams = PlatformParams()


def _section(obj: Json, key: str) -> Json:
    v = obj.get(key)
    if v is None:
        return {}
    if not isinstance(v, dict):
        raise ValueError(f"genesis section {key!r} must be a mapping")
    return v


def _int(sec: Json, key: str, default: int) -> int:
    v = sec.get(key, default)
    # Floats are rejected: wei amounts must be exact.
    if isinstance(v, bool) or not isinstance(v, (int, str)):
        raise ValueError(f"{key} must be an integer; got {v!r}")
    try:
        return int(v)
    except ValueError as e:
        raise ValueError(f"{key} must be an integer; got {v!r}") from e


def _account(rec: Any, *, what: str) -> GenesisAccount:
    if not isinstance(rec, dict):
        raise ValueError(f"{what} must be a mapping")
    pubkey = str(rec.get("pubkey") or "").strip().lower()
    address = norm_addr(rec.get("address"))
    if pubkey:
        derived = address_from_pubkey(pubkey)
        if address and address != derived:
            raise ValueError(f"{what}: address does not match pubkey")
        address = derived
    if not address:
        raise ValueError(f"{what} needs a pubkey or an address")
    return GenesisAccount(address=address, pubkey=pubkey, balance=_int(rec, "balance", 0))


def _token(sec: Json, d: TokenParams) -> TokenParams:
    return TokenParams(
        name=str(sec.get("name") or d.name),
        symbol=str(sec.get("symbol") or d.symbol),
        decimals=_int(sec, "decimals", d.decimals),
        initial_supply=_int(sec, "initial_supply", d.initial_supply),
    )


def parse_genesis(obj: Any) -> GenesisConfig:
    if not isinstance(obj, dict):
        raise ValueError("genesis config must be a mapping")

    chain_id = str(obj.get("chain_id") or "").strip()
    if not chain_id:
        chain_id = str(os.environ.get("ACDM_CHAIN_ID", "")).strip()

    deployer = _account(obj.get("deployer"), what="deployer")
    accounts_raw = obj.get("accounts") or []
    if not isinstance(accounts_raw, list):
        raise ValueError("accounts must be a list")
    accounts = [_account(rec, what=f"accounts[{i}]") for i, rec in enumerate(accounts_raw)]

    d = GenesisConfig(chain_id=chain_id, deployer=deployer)
    liq, stk, dao, plat = (_section(obj, k) for k in ("liquidity", "staking", "dao", "platform"))

    return GenesisConfig(
        chain_id=chain_id,
        deployer=deployer,
        accounts=accounts,
        require_signatures=bool(obj.get("require_signatures", d.require_signatures)),
        reward_token=_token(_section(obj, "reward_token"), d.reward_token),
        acdm_token=_token(_section(obj, "acdm_token"), d.acdm_token),
        liquidity=LiquidityParams(
            tokens=_int(liq, "tokens", d.liquidity.tokens),
            eth_wei=_int(liq, "eth_wei", d.liquidity.eth_wei),
            slippage_percent=_int(liq, "slippage_percent", d.liquidity.slippage_percent),
            deadline_slack_s=_int(liq, "deadline_slack_s", d.liquidity.deadline_slack_s),
        ),
        staking=StakingParams(
            reward_percentage=_int(stk, "reward_percentage", d.staking.reward_percentage),
            reward_period=_int(stk, "reward_period", d.staking.reward_period),
            withdrawal_timeout=_int(stk, "withdrawal_timeout", d.staking.withdrawal_timeout),
            reward_pool=_int(stk, "reward_pool", d.staking.reward_pool),
        ),
        dao=DaoParams(
            minimum_quorum=_int(dao, "minimum_quorum", d.dao.minimum_quorum),
            debating_period=_int(dao, "debating_period", d.dao.debating_period),
            chairman=norm_addr(dao.get("chairman")),
        ),
        platform=PlatformParams(
            round_duration=_int(plat, "round_duration", d.platform.round_duration),
            first_referrer_sale_fee=_int(plat, "first_referrer_sale_fee", d.platform.first_referrer_sale_fee),
            second_referrer_sale_fee=_int(plat, "second_referrer_sale_fee", d.platform.second_referrer_sale_fee),
            referrer_trade_fee=_int(plat, "referrer_trade_fee", d.platform.referrer_trade_fee),
            initial_supply=_int(plat, "initial_supply", d.platform.initial_supply),
            initial_price=_int(plat, "initial_price", d.platform.initial_price),
        ),
    )


def load_genesis(path: str) -> GenesisConfig:
    """Load GenesisConfig from a YAML (or JSON) file."""
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(str(p))

    with p.open("r", encoding="utf-8") as f:
        obj = yaml.safe_load(f)

    return parse_genesis(obj)


def apply_genesis_accounts(state: Json, cfg: GenesisConfig) -> Tuple[bool, Json]:
    """Create genesis accounts and native balances on a fresh ledger.

    Returns (changed, state). Only applies when ledger height == 0; safe to
    call repeatedly.
    """
    if int(state.get("height", 0) or 0) != 0:
        return False, state

    changed = False
    meta = state.setdefault("meta", {})
    if cfg.chain_id and meta.get("chain_id") != cfg.chain_id:
        meta["chain_id"] = cfg.chain_id
        changed = True

    params = state.setdefault("params", {})
    if params.get("require_signatures") != cfg.require_signatures:
        params["require_signatures"] = cfg.require_signatures
        changed = True

    accounts = state.setdefault("accounts", {})
    funded = meta.setdefault("genesis_funded", [])
    for acct in [cfg.deployer, *cfg.accounts]:
        rec = accounts.get(acct.address)
        if not isinstance(rec, dict):
            rec = {"address": acct.address, "pubkey": acct.pubkey, "nonce": 0}
            accounts[acct.address] = rec
            changed = True
        elif acct.pubkey and rec.get("pubkey") != acct.pubkey:
            rec["pubkey"] = acct.pubkey
            changed = True
        if acct.balance and acct.address not in funded:
            credit_native(state, acct.address, acct.balance)
            funded.append(acct.address)
            changed = True

    return changed, state
