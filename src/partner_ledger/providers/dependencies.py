from __future__ import annotations

from fastapi import Depends

from partner_ledger.core.config import Settings, get_settings
from partner_ledger.credentials.enums import Provider

from .exceptions import SettlementConfigurationError
from .gateway import SettlementGateway, SignedSettlementGateway

_GATEWAYS: dict[Provider, SettlementGateway] = {}


class GatewayRegistry:
    """Looks up the gateway for a provider, building it from settings on demand."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def get(self, provider: Provider) -> SettlementGateway:
        if provider in _GATEWAYS:
            return _GATEWAYS[provider]

        endpoint = self._settings.providers.get(provider.value)
        if endpoint is None:
            raise SettlementConfigurationError(
                f"No endpoint configured for provider '{provider.value}'"
            )
        gateway = SignedSettlementGateway(
            provider=provider.value,
            base_url=endpoint.base_url,
            timeout_seconds=endpoint.timeout_seconds,
        )
        _GATEWAYS[provider] = gateway
        return gateway


def get_gateway_registry(settings: Settings = Depends(get_settings)) -> GatewayRegistry:
    return GatewayRegistry(settings)


def register_gateway(provider: Provider, gateway: SettlementGateway) -> None:
    """Install a gateway explicitly, replacing any built from settings."""
    _GATEWAYS[provider] = gateway


async def close_gateways() -> None:
    for gateway in list(_GATEWAYS.values()):
        if isinstance(gateway, SignedSettlementGateway):
            await gateway.aclose()
    _GATEWAYS.clear()


def reset_provider_dependencies() -> None:
    """Reset cached gateways to allow reconfiguration during tests."""

    _GATEWAYS.clear()
