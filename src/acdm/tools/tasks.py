"""Operator CLI for the ACDM platform API.

Each subcommand builds one transaction, signs it with the caller's ed25519
seed, submits it to a running node and prints the interesting events from
the receipt:

    acdm-task --api-url http://127.0.0.1:8000 --privkey-file key.hex \\
        buy --contract 0x... --value 1000000000000000000
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, List, Optional

from acdm.crypto.sig import pubkey_from_privkey, sign_tx_envelope_dict
from acdm.ledger.state import address_from_pubkey

Json = Dict[str, Any]


def _http_json(method: str, url: str, body: Optional[Json] = None, timeout_s: float = 10.0) -> Json:
    method = method.upper().strip()
    headers = {"Content-Type": "application/json"}
    data: Optional[bytes] = None
    if body is not None:
        data = json.dumps(body).encode("utf-8")

    req = urllib.request.Request(url, data=data, headers=headers, method=method)

    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            raw = resp.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as e:
        raw = e.read().decode("utf-8", errors="replace")
        try:
            return json.loads(raw)
        except ValueError:
            return {"ok": False, "error": {"code": "http_error", "message": raw, "details": {"status": e.code}}}
    except urllib.error.URLError as e:
        return {"ok": False, "error": {"code": "url_error", "message": str(getattr(e, "reason", e)), "details": {}}}

    try:
        return json.loads(raw)
    except ValueError:
        return {"ok": False, "error": {"code": "bad_json", "message": raw, "details": {}}}


def _read_secret(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read().strip()


class TaskClient:
    """Signs and submits transactions for one account."""

    def __init__(self, *, api_url: str, privkey: str, chain_id: str) -> None:
        self.api_url = api_url.rstrip("/")
        self.privkey = privkey
        self.chain_id = chain_id
        self.address = address_from_pubkey(pubkey_from_privkey(privkey))

    def next_nonce(self) -> int:
        doc = _http_json("GET", f"{self.api_url}/v1/accounts/{self.address}")
        if not doc.get("ok"):
            raise RuntimeError(f"account lookup failed: {doc.get('error')}")
        return int(doc["account"]["nonce"]) + 1

    def submit(self, *, to: str, tx_type: str, payload: Optional[Json] = None, value: int = 0) -> Json:
        tx: Json = {
            "tx_type": tx_type,
            "signer": self.address,
            "nonce": self.next_nonce(),
            "to": to,
            "value": int(value),
            "payload": dict(payload or {}),
        }
        tx = sign_tx_envelope_dict(tx=tx, privkey=self.privkey, chain_id=self.chain_id)
        return _http_json("POST", f"{self.api_url}/v1/tx/submit", body=tx)


def _events(res: Json, name: str) -> List[Json]:
    receipt = res.get("receipt") or {}
    return [e for e in receipt.get("events") or [] if e.get("event") == name]


def _report(res: Json, on_ok: Callable[[Json], None]) -> int:
    if not res.get("ok"):
        err = res.get("error") or {}
        print(f"Transaction failed: {err.get('code')}: {err.get('message')}")
        return 1
    on_ok(res)
    print("Block height:", res["receipt"]["height"])
    return 0


def _cmd_register(client: TaskClient, args: argparse.Namespace) -> int:
    payload = {"referrer": args.referrer} if args.referrer else {}
    res = client.submit(to=args.contract, tx_type="PLATFORM_REGISTER", payload=payload)
    return _report(res, lambda _r: print("Successfully registered the user:", client.address))


def _cmd_buy(client: TaskClient, args: argparse.Namespace) -> int:
    res = client.submit(to=args.contract, tx_type="PLATFORM_BUY", value=args.value)

    def ok(r: Json) -> None:
        for e in _events(r, "SaleOrder"):
            print("Successfully bought; amount:", e["args"]["amount"])
        for e in _events(r, "ReferralPayment"):
            print("Referral payment to %s: %s wei" % (e["args"]["referrer"], e["args"]["amount"]))

    return _report(res, ok)


def _cmd_approve(client: TaskClient, args: argparse.Namespace) -> int:
    res = client.submit(
        to=args.token, tx_type="TOKEN_APPROVE", payload={"spender": args.spender, "amount": args.amount}
    )
    return _report(res, lambda _r: print("Approved %s for %s" % (args.amount, args.spender)))


def _cmd_put_order(client: TaskClient, args: argparse.Namespace) -> int:
    res = client.submit(
        to=args.contract, tx_type="PLATFORM_PUT_ORDER", payload={"amount": args.amount, "price": args.price}
    )

    def ok(r: Json) -> None:
        for e in _events(r, "PutOrder"):
            print("Successfully created the order:", e["args"]["id"])

    return _report(res, ok)


def _cmd_cancel_order(client: TaskClient, args: argparse.Namespace) -> int:
    res = client.submit(to=args.contract, tx_type="PLATFORM_CANCEL_ORDER", payload={"order_id": args.order_id})
    return _report(res, lambda _r: print("Successfully cancelled the order:", args.order_id))


def _cmd_redeem_order(client: TaskClient, args: argparse.Namespace) -> int:
    res = client.submit(
        to=args.contract, tx_type="PLATFORM_REDEEM_ORDER", payload={"order_id": args.order_id}, value=args.value
    )

    def ok(r: Json) -> None:
        for e in _events(r, "TradeOrder"):
            print("Successfully made a trade, order id: %s, amount: %s" % (e["args"]["id"], e["args"]["amount"]))

    return _report(res, ok)


def _round_switched(r: Json) -> None:
    for e in _events(r, "RoundSwitch"):
        print("Round switched to:", e["args"]["round"])


def _cmd_start_sale_round(client: TaskClient, args: argparse.Namespace) -> int:
    return _report(client.submit(to=args.contract, tx_type="PLATFORM_START_SALE_ROUND"), _round_switched)


def _cmd_start_trade_round(client: TaskClient, args: argparse.Namespace) -> int:
    return _report(client.submit(to=args.contract, tx_type="PLATFORM_START_TRADE_ROUND"), _round_switched)


def _cmd_vote(client: TaskClient, args: argparse.Namespace) -> int:
    support = args.support == "for"
    res = client.submit(
        to=args.contract, tx_type="DAO_VOTE", payload={"proposal_id": args.proposal_id, "support": support}
    )
    return _report(
        res,
        lambda _r: print("Successfully voted `%s` on the proposal with id %d" % (args.support, args.proposal_id)),
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="acdm-task", description="Submit signed ACDM platform transactions")
    p.add_argument("--api-url", default=os.environ.get("ACDM_API_URL", "http://127.0.0.1:8000"))
    p.add_argument("--chain-id", default=os.environ.get("ACDM_CHAIN_ID", "acdm-dev"))
    p.add_argument("--privkey", default=os.environ.get("ACDM_PRIVKEY", ""))
    p.add_argument("--privkey-file", default=os.environ.get("ACDM_PRIVKEY_FILE", ""))

    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("register", help="Register on the platform, optionally under a referrer")
    s.add_argument("--contract", required=True)
    s.add_argument("--referrer", default="")
    s.set_defaults(fn=_cmd_register)

    s = sub.add_parser("buy", help="Buy ACDM in the sale round")
    s.add_argument("--contract", required=True)
    s.add_argument("--value", type=int, required=True, help="Value in wei")
    s.set_defaults(fn=_cmd_buy)

    s = sub.add_parser("approve", help="Approve a spender on an ERC-20 style token")
    s.add_argument("--token", required=True)
    s.add_argument("--spender", required=True)
    s.add_argument("--amount", type=int, required=True)
    s.set_defaults(fn=_cmd_approve)

    s = sub.add_parser("put-order", help="Put ACDM up for sale in the trade round")
    s.add_argument("--contract", required=True)
    s.add_argument("--amount", type=int, required=True, help="Token amount in base units")
    s.add_argument("--price", type=int, required=True, help="Price in wei per whole token")
    s.set_defaults(fn=_cmd_put_order)

    s = sub.add_parser("cancel-order", help="Cancel an order and take back the rest of its tokens")
    s.add_argument("--contract", required=True)
    s.add_argument("--order-id", type=int, required=True)
    s.set_defaults(fn=_cmd_cancel_order)

    s = sub.add_parser("redeem-order", help="Buy tokens from an order")
    s.add_argument("--contract", required=True)
    s.add_argument("--order-id", type=int, required=True)
    s.add_argument("--value", type=int, required=True, help="Value in wei")
    s.set_defaults(fn=_cmd_redeem_order)

    s = sub.add_parser("start-sale-round", help="Switch the platform to the sale round")
    s.add_argument("--contract", required=True)
    s.set_defaults(fn=_cmd_start_sale_round)

    s = sub.add_parser("start-trade-round", help="Switch the platform to the trade round")
    s.add_argument("--contract", required=True)
    s.set_defaults(fn=_cmd_start_trade_round)

    s = sub.add_parser("vote", help="Vote on a DAO proposal")
    s.add_argument("--contract", required=True)
    s.add_argument("--proposal-id", type=int, required=True)
    s.add_argument("--support", choices=["for", "against"], required=True)
    s.set_defaults(fn=_cmd_vote)

    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    priv = (args.privkey or "").strip()
    if not priv and (args.privkey_file or "").strip():
        priv = _read_secret(args.privkey_file.strip())
    if not priv:
        print("missing privkey: set ACDM_PRIVKEY or --privkey / --privkey-file")
        return 2

    client = TaskClient(api_url=args.api_url, privkey=priv, chain_id=args.chain_id)
    try:
        return int(args.fn(client, args))
    except RuntimeError as e:
        print(str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())
