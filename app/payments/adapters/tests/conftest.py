"""
Pytest fixtures for provider adapter tests.

Adapters are given a mocked requests.Session, so no test makes a network
call. ``make_response`` builds the response objects the session returns.

Sections:
    - Response Helpers
    - Adapter Fixtures
"""

import json
from typing import Any
from unittest.mock import MagicMock

import pytest
import requests

from payments.adapters import GlobalWalletAdapter, WalletAAdapter, WalletBAdapter


# =============================================================================
# Response Helpers
# =============================================================================


def build_response(status_code: int = 200, body: Any = None, text: str | None = None) -> MagicMock:
    """A requests.Response stand-in with status_code, content, text and json()."""
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    if text is not None:
        response.text = text
        response.content = text.encode()
        response.json.side_effect = ValueError("not json")
    elif body is None:
        response.text = ""
        response.content = b""
        response.json.side_effect = ValueError("empty body")
    else:
        response.text = json.dumps(body)
        response.content = response.text.encode()
        response.json.return_value = body
    return response


@pytest.fixture
def make_response():
    return build_response


# =============================================================================
# Adapter Fixtures
# =============================================================================


@pytest.fixture
def http_session():
    """Mocked requests.Session shared by the adapter under test."""
    return MagicMock(spec=requests.Session)


@pytest.fixture
def wallet_a(http_session):
    return WalletAAdapter(
        public_key="pk-test",
        secret_key="sk-test",
        base_url="https://wallet-a.test",
        session=http_session,
    )


@pytest.fixture
def wallet_b(http_session):
    return WalletBAdapter(
        api_key="api-key-test",
        merchant_account="TestMerchant",
        base_url="https://wallet-b.test",
        session=http_session,
    )


@pytest.fixture
def global_wallet(http_session):
    return GlobalWalletAdapter(
        client_id="client-id",
        client_secret="client-secret",
        base_url="https://global-wallet.test",
        session=http_session,
    )
