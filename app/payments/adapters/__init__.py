"""
Payment provider adapters.

All provider API calls go through these adapters to ensure consistent
timeouts, error translation, circuit breaking and logging.

Usage:
    from payments.adapters import AdapterRegistry, CreateSessionParams

    adapter = AdapterRegistry().get("wallet_a")
    session = adapter.create_session(CreateSessionParams(...))
"""

from payments.adapters.base import (
    CreateSessionParams,
    PaymentProviderAdapter,
    ProviderStatus,
    RefundParams,
    RefundResult,
    SessionResult,
)
from payments.adapters.circuit_breaker import CircuitBreaker, CircuitState
from payments.adapters.global_wallet import GlobalWalletAdapter
from payments.adapters.registry import AdapterRegistry, get_adapter
from payments.adapters.wallet_a import WalletAAdapter
from payments.adapters.wallet_b import WalletBAdapter

__all__ = [
    "AdapterRegistry",
    "CircuitBreaker",
    "CircuitState",
    "CreateSessionParams",
    "GlobalWalletAdapter",
    "PaymentProviderAdapter",
    "ProviderStatus",
    "RefundParams",
    "RefundResult",
    "SessionResult",
    "WalletAAdapter",
    "WalletBAdapter",
    "get_adapter",
]
