from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class ApplyError(Exception):
    """Canonical error type for contract apply, view and dispatch failures.

    ``code`` is a stable machine-readable identifier (``wrong_round``),
    ``reason`` is the human-readable revert message (``Not a 'Trade' round``).
    """

    code: str
    reason: str
    details: Any | None = None

    def to_json(self) -> dict[str, Any]:
        return {"code": self.code, "reason": self.reason, "details": self.details}

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"
