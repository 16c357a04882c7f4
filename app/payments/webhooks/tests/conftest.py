"""
Pytest fixtures for webhook tests.

A throwaway RSA key pair stands in for GlobalWallet's signing
certificate. HMAC helpers live in signing.py.
"""

import base64
import zlib

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from payments.webhooks.tests.signing import GLOBAL_WALLET_WEBHOOK_ID, WALLET_A_SECRET, WALLET_B_SECRET


@pytest.fixture(scope="session")
def gw_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def gw_public_key_pem(gw_private_key):
    return (
        gw_private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode()
    )


@pytest.fixture
def gw_headers(gw_private_key):
    """Build GlobalWallet transmission headers for a body."""

    def build(body: bytes, webhook_id: str = GLOBAL_WALLET_WEBHOOK_ID, transmission_id: str = "tx-1"):
        transmission_time = "2026-03-10T12:00:00Z"
        message = f"{transmission_id}|{transmission_time}|{webhook_id}|{zlib.crc32(body)}".encode()
        signature = gw_private_key.sign(message, padding.PKCS1v15(), hashes.SHA256())
        return {
            "X-GW-Transmission-Id": transmission_id,
            "X-GW-Transmission-Time": transmission_time,
            "X-GW-Transmission-Sig": base64.b64encode(signature).decode(),
        }

    return build


@pytest.fixture
def webhook_settings(settings, gw_public_key_pem):
    """Configure secrets for all three providers."""
    settings.WALLET_A_WEBHOOK_SECRET = WALLET_A_SECRET
    settings.WALLET_B_WEBHOOK_SECRET = WALLET_B_SECRET
    settings.GLOBAL_WALLET_WEBHOOK_ID = GLOBAL_WALLET_WEBHOOK_ID
    settings.GLOBAL_WALLET_WEBHOOK_PUBLIC_KEY = gw_public_key_pem
    return settings
