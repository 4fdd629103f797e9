# Security module
from tradiesync.security.keys import EncryptionNotConfiguredError, derive_key
from tradiesync.security.token_vault import (
    BANK_DETAIL_FIELDS,
    DecryptionError,
    TokenVault,
    get_token_vault,
    is_encryption_configured,
)
from tradiesync.security.oauth_state import OAuthStateSigner, StateVerification, get_state_signer
from tradiesync.security.rate_limiter import RateLimiter, RateLimitResult, rate_limiter

__all__ = [
    "EncryptionNotConfiguredError",
    "derive_key",
    "BANK_DETAIL_FIELDS",
    "DecryptionError",
    "TokenVault",
    "get_token_vault",
    "is_encryption_configured",
    "OAuthStateSigner",
    "StateVerification",
    "get_state_signer",
    "RateLimiter",
    "RateLimitResult",
    "rate_limiter",
]
