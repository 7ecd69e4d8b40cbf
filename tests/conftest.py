from __future__ import annotations

import copy
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import yaml

# Ensure local "src/" takes precedence over any globally-installed "acdm" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from acdm.ledger.state import drain_events, native_balance  # noqa: E402
from acdm.runtime import calls, erc20  # noqa: E402
from acdm.runtime.deploy import bootstrap_ledger  # noqa: E402
from acdm.runtime.executor import AcdmExecutor  # noqa: E402
from acdm.runtime.genesis_config import (  # noqa: E402
    GenesisAccount,
    GenesisConfig,
    PlatformParams,
    StakingParams,
)
from acdm.testing.sigtools import account_address, deterministic_ed25519_keypair  # noqa: E402

Json = Dict[str, Any]

START_TIME = 1_700_000_000
ETH = 10**18
CHAIN_ID = "acdm-test"


class Chain:
    """A deployed ledger driven directly through contract calls.

    Every send runs on a copy that replaces the ledger only on success, so a
    failed call leaves the ledger exactly as it was. Emitted events are moved
    out of the ledger into `log` after each send, as the executor does.
    """

    def __init__(self, state: Json) -> None:
        self.state = state
        self.log: List[Json] = drain_events(state)
        d = state["params"]["deployment"]
        self.deployer: str = d["deployer"]
        self.xxx: str = d["reward_token"]
        self.router: str = d["router"]
        self.lp: str = d["lp_token"]
        self.dao: str = d["dao"]
        self.staking: str = d["staking"]
        self.acdm: str = d["acdm_token"]
        self.platform: str = d["platform"]

        self.alice = account_address("alice")
        self.bob = account_address("bob")
        self.carol = account_address("carol")
        self.dave = account_address("dave")

    def send(self, sender: str, to: str, tx_type: str, payload: Optional[Json] = None, value: int = 0) -> Json:
        working = copy.deepcopy(self.state)
        out = calls.call(working, sender=sender, to=to, tx_type=tx_type, payload=payload, value=value)
        self.log.extend(drain_events(working))
        self.state = working
        return out

    def view(self, to: str, tx_type: str, payload: Optional[Json] = None) -> Json:
        return calls.view(self.state, to=to, tx_type=tx_type, payload=payload)

    def sleep(self, seconds: int) -> None:
        self.state["time"] = int(self.state["time"]) + int(seconds)

    def eth(self, addr: str) -> int:
        return native_balance(self.state, addr)

    def tokens(self, token: str, addr: str) -> int:
        return erc20.balance_of(self.state, token=token, account=addr)

    def contract(self, addr: str) -> Json:
        return self.state["contracts"][addr]

    def events(self, name: str, contract: Optional[str] = None) -> List[Json]:
        return [
            e
            for e in self.log
            if e["event"] == name and (contract is None or e["contract"] == contract)
        ]

    def approve(self, owner: str, token: str, spender: str, amount: int) -> None:
        self.send(owner, token, "TOKEN_APPROVE", {"spender": spender, "amount": amount})


def genesis_config(**platform: Any) -> GenesisConfig:
    plat = {"initial_supply": 100, "initial_price": 10_000_000}
    plat.update(platform)
    return GenesisConfig(
        chain_id=CHAIN_ID,
        deployer=GenesisAccount(address=account_address("deployer"), balance=1_000 * ETH),
        accounts=[GenesisAccount(address=account_address(u), balance=1_000 * ETH) for u in ("alice", "bob", "carol", "dave")],
        require_signatures=False,
        staking=StakingParams(reward_pool=500),
        platform=PlatformParams(**plat),
    )


def make_chain(**platform: Any) -> Chain:
    state: Json = {"chain_id": CHAIN_ID, "height": 0, "time": START_TIME, "params": {}}
    bootstrap_ledger(state, genesis_config(**platform))
    return Chain(state)


@pytest.fixture
def chain() -> Chain:
    return make_chain()


@pytest.fixture
def chain_factory():
    """Build a deployed ledger with custom platform parameters."""
    return make_chain


# ----------------------------
# Executor fixtures
# ----------------------------

LABELS = ("deployer", "alice", "bob", "carol", "dave")


class FakeClock:
    def __init__(self, t: int) -> None:
        self.t = int(t)

    def __call__(self) -> int:
        return self.t

    def sleep(self, seconds: int) -> None:
        self.t += int(seconds)


def write_genesis(path: Path, **overrides: Any) -> Path:
    """Write a signed-mode genesis file for the deterministic test keys."""
    doc: Json = {
        "chain_id": CHAIN_ID,
        "deployer": {"pubkey": deterministic_ed25519_keypair(label="deployer")[0], "balance": 1_000 * ETH},
        "accounts": [
            {"pubkey": deterministic_ed25519_keypair(label=label)[0], "balance": 1_000 * ETH} for label in LABELS[1:]
        ],
        "staking": {"reward_pool": 500},
        "platform": {"initial_supply": 100, "initial_price": 10_000_000},
    }
    doc.update(overrides)
    path.write_text(yaml.safe_dump(doc), encoding="utf-8")
    return path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START_TIME)


@pytest.fixture
def genesis_path(tmp_path: Path) -> Path:
    return write_genesis(tmp_path / "genesis.yaml")


@pytest.fixture
def executor(tmp_path: Path, genesis_path: Path, clock: FakeClock) -> AcdmExecutor:
    ex = AcdmExecutor(db_path=str(tmp_path / "acdm.db"), chain_id=CHAIN_ID, clock=clock)
    ex.bootstrap(str(genesis_path))
    return ex


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, executor: AcdmExecutor):
    """API test client bound to the `executor` fixture."""
    from fastapi.testclient import TestClient

    from acdm.api import app as api_app

    monkeypatch.setenv("ACDM_RL_WRITE_BURST", "1000")
    monkeypatch.setenv("ACDM_RL_READ_BURST", "1000")
    monkeypatch.setattr(api_app, "build_executor", lambda: executor)

    with TestClient(api_app.create_app(boot_runtime=True)) as c:
        yield c
