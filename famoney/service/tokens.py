from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from typing import Any, Optional

from famoney.logging import get_logger
from famoney.service.errors import InvalidTokenError

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"

_HEADER = {"alg": "HS256", "typ": "JWT"}


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


class TokenCodec:
    """Signs and parses compact HS256 tokens.

    The secret is supplied by the caller; the codec holds no defaults of its
    own. Every verification failure (structure, algorithm, signature, expiry)
    surfaces as ``InvalidTokenError`` without a sub-reason.
    """

    def __init__(self, secret: str, *, clock=time.time) -> None:
        if not secret:
            raise ValueError("signing secret is required")
        self._secret = secret.encode()
        self._clock = clock

    def _sign(self, signing_input: str) -> str:
        digest = hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        return _encode_segment(digest)

    def issue(self, claims: dict[str, Any], expires_in: int) -> str:
        now = int(self._clock())
        payload = dict(claims)
        payload.setdefault("jti", str(uuid.uuid4()))
        payload["iat"] = now
        payload["exp"] = now + int(expires_in)
        header_enc = _encode_segment(json.dumps(_HEADER, separators=(",", ":")).encode())
        payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def parse(self, token: str) -> dict[str, Any]:
        if not isinstance(token, str):
            raise InvalidTokenError()
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise InvalidTokenError() from None

        # Reject anything but HS256 before touching the signature
        try:
            header = json.loads(_decode_segment(header_b64))
        except ValueError:
            logger.warning("jwt_header_decode_failed")
            raise InvalidTokenError() from None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            raise InvalidTokenError()

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            raise InvalidTokenError()
        try:
            payload = json.loads(_decode_segment(payload_b64))
        except ValueError as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            raise InvalidTokenError() from None
        if not isinstance(payload, dict):
            raise InvalidTokenError()

        exp = _as_timestamp(payload.get("exp"))
        if exp is None or exp <= self._clock():
            raise InvalidTokenError()
        if not payload.get("sub") or payload.get("type") not in (ACCESS, REFRESH):
            raise InvalidTokenError()
        return payload


def _as_timestamp(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


__all__ = ["ACCESS", "REFRESH", "TokenCodec"]
