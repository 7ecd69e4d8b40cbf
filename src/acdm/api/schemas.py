"""Pydantic request schemas for the public API.

These exist only for HTTP input validation; contract payloads are checked by
admission and by the contract handlers themselves.
"""

from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, Field


class TxSubmitRequest(BaseModel):
    tx_type: str = Field(..., min_length=1, description="Transaction type, e.g. PLATFORM_BUY")
    signer: str = Field(..., min_length=1, description="Signer account address")
    nonce: int = Field(..., ge=0, description="Signer nonce; must be the account nonce + 1")
    to: str = Field(..., min_length=1, description="Target contract address")
    value: int = Field(default=0, ge=0, description="Attached native value in wei")
    payload: Dict[str, Any] = Field(default_factory=dict)
    sig: str = Field(default="", description="Hex ed25519 signature over the canonical tx message")

    # Unknown fields are kept so admission can reject them explicitly.
    model_config = {"extra": "allow"}
