"""Signing helpers that mirror what each provider does on its side."""

import base64
import hashlib
import hmac
import json

WALLET_A_SECRET = "wallet-a-webhook-secret"
WALLET_B_SECRET = "wallet-b-webhook-secret"
GLOBAL_WALLET_WEBHOOK_ID = "WH-TEST-1"


def encode(payload) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode()


def wallet_a_signature(body: bytes, secret: str = WALLET_A_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def wallet_b_signature(body: bytes, secret: str = WALLET_B_SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()
