from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Sequence

from eventdesk.config import Settings
from eventdesk.logging import get_logger

logger = get_logger(__name__)

RESET_TOKEN_TYPE = "reset"


class InvalidToken(Exception):
    """Token is malformed, expired or carries a bad signature.

    The cause is deliberately not exposed to callers.
    """


class TokenIssuer:
    """Stateless HS256 signing and verification of bearer tokens.

    Payloads are exactly ``{sub, roles, exp}`` for access/refresh tokens and
    ``{sub, type: "reset", exp}`` for reset tokens.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.settings = settings
        self._secret = settings.jwt_secret.encode()
        self._clock = clock

    def _now(self) -> datetime:
        """Timezone-aware UTC helper to avoid naive datetime usage."""

        if self._clock is not None:
            return self._clock()
        return datetime.now(timezone.utc)

    @property
    def access_lifetime(self) -> timedelta:
        return timedelta(minutes=self.settings.access_token_ttl_minutes)

    @property
    def refresh_lifetime(self) -> timedelta:
        return timedelta(minutes=self.settings.refresh_token_ttl_minutes)

    @property
    def reset_lifetime(self) -> timedelta:
        return timedelta(minutes=self.settings.reset_token_ttl_minutes)

    def issue(self, subject: str, roles: Sequence[str], lifetime: timedelta) -> str:
        return self._sign({"sub": subject, "roles": list(roles)}, lifetime)

    def issue_access(self, subject: str, roles: Sequence[str]) -> str:
        return self.issue(subject, roles, self.access_lifetime)

    def issue_refresh(self, subject: str, roles: Sequence[str]) -> str:
        return self.issue(subject, roles, self.refresh_lifetime)

    def issue_reset(self, subject: str) -> str:
        return self._sign({"sub": subject, "type": RESET_TOKEN_TYPE}, self.reset_lifetime)

    def verify(self, token: str) -> dict[str, Any]:
        """Return the decoded payload or raise :class:`InvalidToken`."""

        if not isinstance(token, str):
            raise InvalidToken()
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise InvalidToken() from None

        # Reject anything but HS256 to prevent algorithm confusion
        try:
            header = json.loads(self._decode_segment(header_b64))
        except (binascii.Error, UnicodeDecodeError, ValueError):
            logger.warning("jwt_header_decode_failed")
            raise InvalidToken() from None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("jwt_invalid_algorithm")
            raise InvalidToken()

        expected_sig = self._signature(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode("utf-8")):
            raise InvalidToken()
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            raise InvalidToken() from None
        if not isinstance(payload, dict) or not isinstance(payload.get("sub"), str):
            raise InvalidToken()
        exp = payload.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise InvalidToken()
        if exp <= self._now().timestamp():
            raise InvalidToken()
        return payload

    def _sign(self, claims: dict[str, Any], lifetime: timedelta) -> str:
        payload = {**claims, "exp": int((self._now() + lifetime).timestamp())}
        header_enc = self._encode_segment(
            json.dumps({"alg": "HS256", "typ": "JWT"}, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._signature(signing_input)}"

    def _signature(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    @staticmethod
    def _encode_segment(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    @staticmethod
    def _decode_segment(segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)
