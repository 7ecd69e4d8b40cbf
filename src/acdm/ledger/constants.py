# src/acdm/ledger/constants.py
from __future__ import annotations

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Fixed additive step applied to the sale price on every Sale round (wei).
PRICE_INCREMENT_WEI = 4_000_000_000_000

# Multiplicative step applied to the sale price: price * 103 / 100.
PRICE_GROWTH_NUM = 103
PRICE_GROWTH_DEN = 100

# Deadline slack (seconds) given to the router when the treasury is swapped.
SWAP_DEADLINE_SLACK_S = 15

ROUND_SALE = "SALE"
ROUND_TRADE = "TRADE"

KIND_TOKEN = "token"
KIND_ROUTER = "router"
KIND_STAKING = "staking"
KIND_DAO = "dao"
KIND_PLATFORM = "platform"
