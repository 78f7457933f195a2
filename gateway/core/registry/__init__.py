"""Registry access: identity-provider tokens and the occurrence API client."""

from .auth import AccessTokenManager, TenantCredentials, TokenAcquisitionError, TOKEN_ATTEMPTS
from .client import RegistryClient, RegistryResponse, RegistryUnavailable
from .token_cache import CachedToken, TokenCache

__all__ = [
    "AccessTokenManager",
    "CachedToken",
    "RegistryClient",
    "RegistryResponse",
    "RegistryUnavailable",
    "TenantCredentials",
    "TokenAcquisitionError",
    "TokenCache",
    "TOKEN_ATTEMPTS",
]
