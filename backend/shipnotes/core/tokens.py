"""Pure functions for creating and decoding HS256 bearer tokens.

The identity provider issues tokens whose ``sub`` is the user id; ``email``
and ``name`` are optional profile claims mirrored into the users table.
``create_token`` exists for tests and local tooling.
"""

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


@dataclass(frozen=True)
class TokenPayload:
    """Decoded token payload. Immutable."""
    sub: str
    exp: datetime
    email: Optional[str] = None
    name: Optional[str] = None


def create_token(
    subject: str,
    secret: str,
    algorithm: str = "HS256",
    expires_hours: int = 24,
    email: Optional[str] = None,
    name: Optional[str] = None,
) -> str:
    """Create a signed token for *subject*. Only HS256 is supported."""
    if algorithm != "HS256":
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    now = time.time()
    payload = {"sub": subject, "iat": int(now), "exp": int(now + expires_hours * 3600)}
    if email:
        payload["email"] = email
    if name:
        payload["name"] = name

    header = {"alg": "HS256", "typ": "JWT"}
    segments = [
        _b64encode(json.dumps(header).encode()),
        _b64encode(json.dumps(payload).encode()),
    ]
    signing_input = b".".join(segments)
    signature = hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()
    segments.append(_b64encode(signature))
    return b".".join(segments).decode()


def decode_token(token: str, secret: str, algorithm: str = "HS256") -> Optional[TokenPayload]:
    """Verify and decode *token*.

    Returns ``None`` on any failure (bad signature, expired, malformed,
    missing subject); callers decide what absence means.
    """
    if algorithm != "HS256":
        return None
    try:
        parts = token.encode().split(b".")
        if len(parts) != 3:
            return None

        signing_input = parts[0] + b"." + parts[1]
        expected_sig = hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()
        if not hmac.compare_digest(expected_sig, _b64decode(parts[2])):
            return None

        payload = json.loads(_b64decode(parts[1]))
        exp = payload.get("exp", 0)
        if time.time() > exp or not payload.get("sub"):
            return None

        return TokenPayload(
            sub=str(payload["sub"]),
            exp=datetime.fromtimestamp(exp, tz=timezone.utc),
            email=payload.get("email"),
            name=payload.get("name"),
        )
    except (json.JSONDecodeError, KeyError, ValueError, IndexError, TypeError):
        return None


def _b64encode(data: bytes) -> bytes:
    return base64.urlsafe_b64encode(data).rstrip(b"=")


def _b64decode(data: bytes) -> bytes:
    padding = 4 - len(data) % 4
    if padding != 4:
        data += b"=" * padding
    return base64.urlsafe_b64decode(data)
