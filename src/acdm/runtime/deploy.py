# src/acdm/runtime/deploy.py
"""Deploy the full ACDM contract set onto a fresh ledger.

Order matters: the staking ledger needs the DAO address, the DAO is bound to
the staking ledger afterwards (DAO_INIT), and the ACDM token's minter can only
be set once the platform exists.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from acdm.ledger.state import now
from acdm.runtime import erc20
from acdm.runtime.apply.dao import deploy_dao
from acdm.runtime.apply.exchange import deploy_router
from acdm.runtime.apply.platform import deploy_platform
from acdm.runtime.apply.staking import deploy_staking
from acdm.runtime.apply.token import deploy_token
from acdm.runtime.calls import call
from acdm.runtime.genesis_config import GenesisConfig, apply_genesis_accounts
from acdm.runtime.runtime_logging import log_event
from acdm.runtime.state_invariants import ensure_state

Json = Dict[str, Any]

log = logging.getLogger("acdm.deploy")


def _less_percent(amount: int, percent: int) -> int:
    return amount - amount * percent // 100


def deploy_system(state: Json, cfg: GenesisConfig) -> Json:
    """Deploy every contract and return their addresses.

    The deployer must already hold enough native balance for the initial
    XXX/ETH liquidity. The addresses are also recorded under
    ``state["params"]["deployment"]``.
    """
    ensure_state(state)
    deployer = cfg.deployer.address
    rt = cfg.reward_token
    unit = 10**rt.decimals

    xxx = deploy_token(
        state,
        deployer=deployer,
        name=rt.name,
        symbol=rt.symbol,
        decimals=rt.decimals,
        initial_supply=rt.initial_supply * unit,
    )
    router = deploy_router(state, deployer=deployer)

    liq = cfg.liquidity
    liq_tokens = liq.tokens * unit
    call(state, sender=deployer, to=xxx, tx_type="TOKEN_APPROVE", payload={"spender": router, "amount": liq_tokens})
    pool = call(
        state,
        sender=deployer,
        to=router,
        tx_type="ROUTER_ADD_LIQUIDITY_ETH",
        payload={
            "token": xxx,
            "amount_token_desired": liq_tokens,
            "amount_token_min": _less_percent(liq_tokens, liq.slippage_percent),
            "amount_eth_min": _less_percent(liq.eth_wei, liq.slippage_percent),
            "to": deployer,
            "deadline": now(state) + liq.deadline_slack_s,
        },
        value=liq.eth_wei,
    )
    lp_token = pool["pair"]

    dao = deploy_dao(
        state,
        deployer=deployer,
        chairman=cfg.dao.chairman or deployer,
        minimum_quorum=cfg.dao.minimum_quorum,
        debating_period=cfg.dao.debating_period,
    )
    staking = deploy_staking(
        state,
        deployer=deployer,
        staking_token=lp_token,
        reward_token=xxx,
        reward_percentage=cfg.staking.reward_percentage,
        reward_period=cfg.staking.reward_period,
        withdrawal_timeout=cfg.staking.withdrawal_timeout,
        dao=dao,
    )
    if cfg.staking.reward_pool:
        erc20.safe_transfer(state, token=xxx, sender=deployer, to=staking, amount=cfg.staking.reward_pool * unit)
    call(state, sender=deployer, to=dao, tx_type="DAO_INIT", payload={"staking": staking})

    at = cfg.acdm_token
    acdm = deploy_token(state, deployer=deployer, name=at.name, symbol=at.symbol, decimals=at.decimals)
    pp = cfg.platform
    platform = deploy_platform(
        state,
        deployer=deployer,
        router=router,
        reward_token=xxx,
        dao=dao,
        round_duration=pp.round_duration,
        first_referrer_sale_fee=pp.first_referrer_sale_fee,
        second_referrer_sale_fee=pp.second_referrer_sale_fee,
        referrer_trade_fee=pp.referrer_trade_fee,
    )
    call(state, sender=deployer, to=acdm, tx_type="TOKEN_SET_MINTER", payload={"minter": platform})
    call(
        state,
        sender=deployer,
        to=platform,
        tx_type="PLATFORM_INIT",
        payload={"token": acdm, "initial_supply": pp.initial_supply, "initial_price": pp.initial_price},
    )

    addresses = {
        "deployer": deployer,
        "reward_token": xxx,
        "router": router,
        "lp_token": lp_token,
        "dao": dao,
        "staking": staking,
        "acdm_token": acdm,
        "platform": platform,
    }
    state["params"]["deployment"] = dict(addresses)
    log_event(log, "system_deployed", **addresses)
    return addresses


def bootstrap_ledger(state: Json, cfg: GenesisConfig) -> bool:
    """Apply genesis accounts and deploy once. Returns True if anything changed."""
    ensure_state(state)
    changed, _ = apply_genesis_accounts(state, cfg)
    if isinstance(state["params"].get("deployment"), dict):
        return changed
    deploy_system(state, cfg)
    return True
