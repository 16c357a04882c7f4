"""
Webhook signature verification, one verifier per provider.

Verification is fail-closed: a missing header, a missing secret, a
malformed signature and a wrong digest all raise
SignatureVerificationError. Verifiers work on the exact raw request
bytes; nothing is parsed before verification succeeds.

    WalletA       HMAC-SHA256(raw body), hex,    X-WalletA-Signature
    WalletB       HMAC-SHA256(raw body), base64, X-WalletB-Signature
    GlobalWallet  RSA-SHA256 PKCS#1 v1.5 over
                  "transmission_id|transmission_time|webhook_id|crc32(body)"
                  X-GW-Transmission-Id / -Time / -Sig

Usage:
    verifier = get_verifier(PaymentProvider.WALLET_A)
    verifier.verify(request.body, request.headers)  # raises on failure
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import zlib
from abc import ABC, abstractmethod
from collections.abc import Mapping

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from django.conf import settings

from payments.exceptions import SignatureVerificationError
from payments.state_machines import PaymentProvider


def _lower_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {str(key).lower(): value for key, value in headers.items()}


class SignatureVerifier(ABC):
    provider: str = ""

    @abstractmethod
    def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        """Raise SignatureVerificationError unless the delivery is authentic."""

    def _fail(self, reason: str) -> SignatureVerificationError:
        return SignatureVerificationError(
            "Webhook signature verification failed",
            details={"provider": self.provider, "reason": reason},
        )


class HmacSignatureVerifier(SignatureVerifier):
    """HMAC-SHA256 over the raw body, compared in constant time."""

    header_name: str = ""

    def __init__(self, secret: str | None) -> None:
        self.secret = secret or ""

    @abstractmethod
    def encode_digest(self, digest: bytes) -> str:
        ...

    def normalize(self, received: str) -> str:
        return received

    def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        if not self.secret:
            raise self._fail("webhook secret not configured")
        received = self.normalize(_lower_headers(headers).get(self.header_name.lower(), "").strip())
        if not received:
            raise self._fail("missing signature header")
        digest = hmac.new(self.secret.encode(), raw_body, hashlib.sha256).digest()
        expected = self.encode_digest(digest)
        if not hmac.compare_digest(expected.encode(), received.encode()):
            raise self._fail("signature mismatch")


class WalletASignatureVerifier(HmacSignatureVerifier):
    provider = PaymentProvider.WALLET_A
    header_name = "X-WalletA-Signature"

    def encode_digest(self, digest: bytes) -> str:
        return digest.hex()

    def normalize(self, received: str) -> str:
        return received.lower()


class WalletBSignatureVerifier(HmacSignatureVerifier):
    provider = PaymentProvider.WALLET_B
    header_name = "X-WalletB-Signature"

    def encode_digest(self, digest: bytes) -> str:
        return base64.b64encode(digest).decode()


class GlobalWalletSignatureVerifier(SignatureVerifier):
    """
    RSA verification of GlobalWallet transmissions.

    ``public_key_pem`` may hold either a PEM public key or a PEM X.509
    certificate.
    """

    provider = PaymentProvider.GLOBAL_WALLET
    id_header = "x-gw-transmission-id"
    time_header = "x-gw-transmission-time"
    sig_header = "x-gw-transmission-sig"

    def __init__(self, webhook_id: str | None, public_key_pem: str | None) -> None:
        self.webhook_id = webhook_id or ""
        self.public_key_pem = public_key_pem or ""

    def _load_public_key(self) -> rsa.RSAPublicKey:
        pem = self.public_key_pem.encode()
        try:
            if b"BEGIN CERTIFICATE" in pem:
                key = x509.load_pem_x509_certificate(pem).public_key()
            else:
                key = serialization.load_pem_public_key(pem)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise self._fail("webhook public key is invalid") from e
        if not isinstance(key, rsa.RSAPublicKey):
            raise self._fail("webhook public key is not RSA")
        return key

    def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        if not self.webhook_id or not self.public_key_pem:
            raise self._fail("webhook id or public key not configured")
        lowered = _lower_headers(headers)
        transmission_id = lowered.get(self.id_header, "")
        transmission_time = lowered.get(self.time_header, "")
        signature_b64 = lowered.get(self.sig_header, "")
        if not (transmission_id and transmission_time and signature_b64):
            raise self._fail("missing transmission headers")
        try:
            signature = base64.b64decode(signature_b64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise self._fail("malformed signature") from e

        message = (
            f"{transmission_id}|{transmission_time}|{self.webhook_id}|{zlib.crc32(raw_body)}"
        ).encode()
        public_key = self._load_public_key()
        try:
            public_key.verify(signature, message, padding.PKCS1v15(), hashes.SHA256())
        except InvalidSignature as e:
            raise self._fail("signature mismatch") from e


def get_verifier(provider: str) -> SignatureVerifier:
    """Build the verifier for ``provider`` from current settings."""
    if provider == PaymentProvider.WALLET_A:
        return WalletASignatureVerifier(settings.WALLET_A_WEBHOOK_SECRET)
    if provider == PaymentProvider.WALLET_B:
        return WalletBSignatureVerifier(settings.WALLET_B_WEBHOOK_SECRET)
    if provider == PaymentProvider.GLOBAL_WALLET:
        return GlobalWalletSignatureVerifier(
            settings.GLOBAL_WALLET_WEBHOOK_ID,
            settings.GLOBAL_WALLET_WEBHOOK_PUBLIC_KEY,
        )
    raise SignatureVerificationError(
        "Unknown webhook provider",
        details={"provider": provider},
    )
