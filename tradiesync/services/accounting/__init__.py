"""Accounting provider strategies, looked up by provider slug."""

import httpx

from tradiesync.config import Settings
from tradiesync.services.accounting.base import (
    AccountingProvider,
    ProviderAPIError,
    ProviderCredentials,
    ProviderError,
    SyncRowError,
    Tenant,
    TenantDiscoveryError,
    TokenEndpointError,
    TokenSet,
)
from tradiesync.services.accounting.myob import MyobProvider
from tradiesync.services.accounting.quickbooks import QuickBooksProvider
from tradiesync.services.accounting.xero import XeroProvider

PROVIDER_CLASSES: dict[str, type[AccountingProvider]] = {
    "xero": XeroProvider,
    "quickbooks": QuickBooksProvider,
    "myob": MyobProvider,
}


def get_provider(name: str, http: httpx.AsyncClient, settings: Settings) -> AccountingProvider:
    """Instantiate the strategy for ``name``. Raises KeyError for unknown providers."""
    return PROVIDER_CLASSES[name](http, settings)


__all__ = [
    "AccountingProvider",
    "ProviderAPIError",
    "ProviderCredentials",
    "ProviderError",
    "SyncRowError",
    "Tenant",
    "TenantDiscoveryError",
    "TokenEndpointError",
    "TokenSet",
    "MyobProvider",
    "QuickBooksProvider",
    "XeroProvider",
    "PROVIDER_CLASSES",
    "get_provider",
]
