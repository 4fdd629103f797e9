"""
Per-role key derivation.

One master secret (ENCRYPTION_KEY) backs two independent keys: the AES-GCM
key used by the token vault and the HMAC key used to sign OAuth state.
Each is derived with HKDF-SHA256 under its own context label, so neither
key reveals anything about the other.
"""

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from tradiesync.config import MIN_ENCRYPTION_KEY_LENGTH

TOKEN_VAULT_LABEL = b"tradiesync/token-vault/v1"
OAUTH_STATE_LABEL = b"tradiesync/oauth-state/v1"

DERIVED_KEY_LENGTH = 32


class EncryptionNotConfiguredError(RuntimeError):
    """ENCRYPTION_KEY is missing or too short."""


def derive_key(master_secret: str | None, label: bytes) -> bytes:
    """Derive a 256-bit key for ``label`` from the master secret."""
    if not master_secret or len(master_secret) < MIN_ENCRYPTION_KEY_LENGTH:
        raise EncryptionNotConfiguredError(
            f"ENCRYPTION_KEY must be set and at least {MIN_ENCRYPTION_KEY_LENGTH} characters long"
        )
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=DERIVED_KEY_LENGTH,
        salt=None,
        info=label,
    )
    return hkdf.derive(master_secret.encode("utf-8"))
