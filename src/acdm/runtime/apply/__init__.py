# src/acdm/runtime/apply/__init__.py
"""Contract apply modules.

Each module owns one contract kind and implements its deterministic state
transitions (``apply_*``) and read-only queries (``view_*``).

NOTE: Keep this package import-safe (no imports of domain_dispatch here).
"""

from __future__ import annotations

__all__ = [
    "ownable",
    "token",
    "exchange",
    "staking",
    "dao",
    "referral",
    "platform",
]
