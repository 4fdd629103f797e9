"""
Token vault: authenticated encryption for credentials at rest.

Ciphertext format: base64(nonce[12] || AES-256-GCM ciphertext || tag[16]).
Decryption never falls back to returning its input; any malformed,
tampered or wrong-key value raises DecryptionError.
"""

import base64
import binascii
import logging
import os
from typing import Iterable, Mapping

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from tradiesync.security.keys import (
    TOKEN_VAULT_LABEL,
    EncryptionNotConfiguredError,
    derive_key,
)

logger = logging.getLogger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16

BANK_DETAIL_FIELDS = (
    "bank_name",
    "bank_bsb",
    "bank_account_number",
    "bank_account_name",
)


class DecryptionError(ValueError):
    """Ciphertext could not be authenticated or decoded."""


class TokenVault:
    """AES-256-GCM encryption keyed from the configured master secret."""

    def __init__(self, master_secret: str | None):
        self._aead = AESGCM(derive_key(master_secret, TOKEN_VAULT_LABEL))

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, ciphertext_b64: str) -> str:
        if not isinstance(ciphertext_b64, str) or not ciphertext_b64:
            raise DecryptionError("Empty ciphertext")
        try:
            raw = base64.b64decode(ciphertext_b64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError("Ciphertext is not valid base64") from e

        # Non-canonical padding bits decode to the same bytes; reject them
        if base64.b64encode(raw).decode("ascii") != ciphertext_b64:
            raise DecryptionError("Ciphertext is not canonical base64")
        if len(raw) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionError("Ciphertext too short")

        nonce, sealed = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
        try:
            plaintext = self._aead.decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise DecryptionError("Ciphertext failed authentication") from e
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Plaintext is not valid UTF-8") from e

    def encrypt_fields(
        self,
        values: Mapping[str, str | None],
        fields: Iterable[str] = BANK_DETAIL_FIELDS,
    ) -> dict[str, str]:
        """
        Encrypt each present, non-empty field independently.

        Returns ``{"<field>_encrypted": ciphertext}`` for the fields supplied;
        absent or empty fields are left out of the result.
        """
        encrypted = {}
        for name in fields:
            value = values.get(name)
            if value:
                encrypted[f"{name}_encrypted"] = self.encrypt(value)
        return encrypted

    def decrypt_fields(
        self,
        values: Mapping[str, str | None],
        fields: Iterable[str] = BANK_DETAIL_FIELDS,
    ) -> dict[str, str]:
        """
        Decrypt ``<field>_encrypted`` entries back to ``{field: plaintext}``.

        Missing ciphertexts are skipped. A ciphertext that fails to decrypt
        raises DecryptionError.
        """
        decrypted = {}
        for name in fields:
            value = values.get(f"{name}_encrypted")
            if value:
                decrypted[name] = self.decrypt(value)
        return decrypted


def is_encryption_configured() -> bool:
    from tradiesync.config import settings

    try:
        derive_key(settings.ENCRYPTION_KEY, TOKEN_VAULT_LABEL)
    except EncryptionNotConfiguredError:
        return False
    return True


def get_token_vault() -> TokenVault:
    """Vault for the current settings. Raises EncryptionNotConfiguredError when unset."""
    from tradiesync.config import settings

    return TokenVault(settings.ENCRYPTION_KEY)
