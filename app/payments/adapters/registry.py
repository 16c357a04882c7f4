"""
Adapter registry: maps provider keys to configured adapter instances.

Services take an AdapterRegistry in their constructor; tests pass a
registry holding mocks instead of patching module globals.

Usage:
    registry = AdapterRegistry()
    adapter = registry.get(PaymentProvider.GLOBAL_WALLET)

    # In tests
    registry = AdapterRegistry({PaymentProvider.WALLET_A: mock_adapter})
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from payments.adapters.global_wallet import GlobalWalletAdapter
from payments.adapters.wallet_a import WalletAAdapter
from payments.adapters.wallet_b import WalletBAdapter
from payments.exceptions import PaymentValidationError
from payments.state_machines import PaymentProvider

if TYPE_CHECKING:
    from payments.adapters.base import PaymentProviderAdapter

ADAPTER_CLASSES: dict[str, type[PaymentProviderAdapter]] = {
    PaymentProvider.WALLET_A: WalletAAdapter,
    PaymentProvider.WALLET_B: WalletBAdapter,
    PaymentProvider.GLOBAL_WALLET: GlobalWalletAdapter,
}


class AdapterRegistry:
    """Lazily builds one adapter per provider from settings."""

    def __init__(self, adapters: dict[str, PaymentProviderAdapter] | None = None) -> None:
        self._adapters: dict[str, PaymentProviderAdapter] = dict(adapters or {})

    def get(self, provider: str) -> PaymentProviderAdapter:
        if provider not in self._adapters:
            adapter_class = ADAPTER_CLASSES.get(provider)
            if adapter_class is None:
                raise PaymentValidationError(
                    f"Unknown payment provider: {provider}",
                    details={"provider": provider},
                )
            self._adapters[provider] = adapter_class()
        return self._adapters[provider]


def get_adapter(provider: str) -> PaymentProviderAdapter:
    return AdapterRegistry().get(provider)
