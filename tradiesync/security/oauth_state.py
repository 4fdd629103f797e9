"""
Signed OAuth ``state`` tokens.

Token layout::

    urlsafe_b64( b64(json_payload) + "." + b64(hmac_sha256(b64(json_payload))) )

The payload carries ``userId``, ``provider`` and ``timestamp`` (epoch ms).
A token is accepted for OAUTH_STATE_TTL_SECONDS after it was signed; tokens
dated in the future are rejected.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from tradiesync.security.keys import OAUTH_STATE_LABEL, derive_key
from tradiesync.utils.clock import epoch_ms

logger = logging.getLogger(__name__)

STATE_TTL_SECONDS = 600

CSRF_ERROR = "Invalid state format - possible CSRF attack"
SIGNATURE_ERROR = "Invalid state signature - possible CSRF attack"


@dataclass
class StateVerification:
    valid: bool
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None


class OAuthStateSigner:
    """HMAC-SHA256 signer for OAuth redirect state."""

    def __init__(self, master_secret: str | None, ttl_seconds: int = STATE_TTL_SECONDS):
        self._key = derive_key(master_secret, OAUTH_STATE_LABEL)
        self.ttl_seconds = ttl_seconds

    def _signature(self, payload_b64: str) -> str:
        digest = hmac.new(self._key, payload_b64.encode("ascii"), hashlib.sha256).digest()
        return base64.b64encode(digest).decode("ascii")

    def sign(self, data: dict[str, Any], now: Optional[int] = None) -> str:
        """Sign ``data``; ``now`` is epoch milliseconds and defaults to the current time."""
        payload = dict(data)
        if "timestamp" not in payload:
            payload["timestamp"] = now if now is not None else epoch_ms()

        payload_json = json.dumps(payload, separators=(",", ":"))
        payload_b64 = base64.b64encode(payload_json.encode("utf-8")).decode("ascii")
        combined = f"{payload_b64}.{self._signature(payload_b64)}"
        return base64.urlsafe_b64encode(combined.encode("ascii")).decode("ascii")

    def verify(self, token: str, now: Optional[int] = None) -> StateVerification:
        """Verify a state token. Never raises."""
        if not token or not isinstance(token, str):
            return StateVerification(valid=False, error=CSRF_ERROR)

        try:
            raw = base64.urlsafe_b64decode(token.encode("ascii"))
            combined = raw.decode("ascii")
        except (binascii.Error, ValueError):
            return StateVerification(valid=False, error=CSRF_ERROR)
        if base64.urlsafe_b64encode(raw).decode("ascii") != token:
            return StateVerification(valid=False, error=CSRF_ERROR)

        parts = combined.split(".")
        if len(parts) != 2:
            return StateVerification(valid=False, error=CSRF_ERROR)
        payload_b64, signature = parts

        if not hmac.compare_digest(signature.encode("ascii"), self._signature(payload_b64).encode("ascii")):
            return StateVerification(valid=False, error=SIGNATURE_ERROR)

        try:
            data = json.loads(base64.b64decode(payload_b64, validate=True).decode("utf-8"))
        except (binascii.Error, ValueError):
            return StateVerification(valid=False, error=CSRF_ERROR)
        if not isinstance(data, dict):
            return StateVerification(valid=False, error=CSRF_ERROR)

        timestamp = data.get("timestamp")
        if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
            return StateVerification(valid=False, error="State missing timestamp")

        current = now if now is not None else epoch_ms()
        age_ms = current - timestamp
        if age_ms < 0:
            return StateVerification(valid=False, error="State timestamp is in the future")
        if age_ms > self.ttl_seconds * 1000:
            return StateVerification(valid=False, error="State expired - please try connecting again")

        return StateVerification(valid=True, data=data)


def get_state_signer() -> OAuthStateSigner:
    from tradiesync.config import settings

    return OAuthStateSigner(settings.ENCRYPTION_KEY, settings.OAUTH_STATE_TTL_SECONDS)
