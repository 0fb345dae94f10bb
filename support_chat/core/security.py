"""Verification of principal tokens issued by the identity subsystem.

Tokens are ``<payload>.<signature>`` where both segments are unpadded
base64url, the payload is compact JSON and the signature is HMAC-SHA256 of the
payload segment under the shared ``chat_auth_secret``.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from datetime import UTC, datetime

from support_chat.domain.principal import Principal

TOKEN_VERSION = 1


def _b64url_decode(raw: str) -> bytes:
    padded = raw + ("=" * (-len(raw) % 4))
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _sign(payload_segment: str, secret: str) -> bytes:
    return hmac.new(
        secret.encode("utf-8"),
        payload_segment.encode("utf-8"),
        hashlib.sha256,
    ).digest()


def decode_access_token(
    token: str,
    secret: str,
    now: datetime | None = None,
) -> Principal:
    try:
        payload_segment, signature_segment = token.split(".", 1)
    except ValueError as exc:
        raise ValueError("Malformed token") from exc

    try:
        actual_signature = _b64url_decode(signature_segment)
    except (ValueError, TypeError) as exc:
        raise ValueError("Malformed token signature") from exc

    if not hmac.compare_digest(_sign(payload_segment, secret), actual_signature):
        raise ValueError("Invalid token signature")

    try:
        payload = json.loads(_b64url_decode(payload_segment).decode("utf-8"))
    except (ValueError, TypeError) as exc:
        raise ValueError("Malformed token payload") from exc

    if not isinstance(payload, dict):
        raise ValueError("Malformed token payload")
    if payload.get("v") != TOKEN_VERSION:
        raise ValueError("Unsupported token version")

    try:
        user_id = str(payload["uid"]).strip()
        is_elevated = payload.get("elv", False)
        display_name = payload.get("name")
        expires_at = datetime.fromtimestamp(int(payload["exp"]), UTC)
    except (KeyError, ValueError, TypeError) as exc:
        raise ValueError("Malformed token payload") from exc

    if not user_id or not isinstance(is_elevated, bool):
        raise ValueError("Malformed token payload")
    if display_name is not None and not isinstance(display_name, str):
        raise ValueError("Malformed token payload")

    if expires_at <= (now or datetime.now(UTC)):
        raise ValueError("Token expired")

    return Principal(
        user_id=user_id,
        is_elevated=is_elevated,
        display_name=display_name,
    )
