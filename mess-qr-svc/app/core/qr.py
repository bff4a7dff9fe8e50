from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict
import hmac
import re
import secrets
import uuid
import jwt

from .errors import TokenFailure

QR_AUD = "mess-membership"
QR_ISS = "mess-qr-svc"
QR_SCOPE = "membership_check"
QR_ALG = "HS256"

# Comfortably inside a version-10 QR symbol at error correction level H.
MAX_TOKEN_LENGTH = 512

_NONCE_RE = re.compile(r"^[A-Za-z0-9_-]{16,64}$")


@dataclass(frozen=True)
class DecodedToken:
    mess_id: uuid.UUID
    nonce: str
    issued_at: int
    signature: str
    token: str


def new_nonce() -> str:
    return secrets.token_urlsafe(16)


def _claims(mess_id: uuid.UUID, nonce: str, issued_at: int) -> Dict[str, Any]:
    # key order is part of the canonical form
    return {
        "aud": QR_AUD,
        "iss": QR_ISS,
        "scope": QR_SCOPE,
        "mess_id": str(mess_id),
        "nonce": nonce,
        "iat": int(issued_at),
    }


def encode(mess_id: uuid.UUID, nonce: str, issued_at: int, secret: str) -> str:
    """Sign a mess verification token.

    The output is a compact HS256 JWT: printable, URL-safe, and deterministic for
    the same inputs, so it can be recomputed during verification.
    """
    if not _NONCE_RE.match(nonce):
        raise ValueError("nonce must be 16-64 url-safe characters")
    return jwt.encode(_claims(mess_id, nonce, issued_at), secret, algorithm=QR_ALG)


def decode(token: str) -> DecodedToken | TokenFailure:
    """Parse a scanned payload without trusting it.

    Never raises: anything that is not a well-formed mess token comes back as
    ``TokenFailure.MALFORMED``. Signature checking is left to :func:`verify`.
    """
    if not isinstance(token, str):
        return TokenFailure.MALFORMED
    token = token.strip()
    if not token or len(token) > MAX_TOKEN_LENGTH or token.count(".") != 2:
        return TokenFailure.MALFORMED
    try:
        header = jwt.get_unverified_header(token)
        payload = jwt.decode(token, options={"verify_signature": False})
    except (jwt.PyJWTError, ValueError, TypeError):
        return TokenFailure.MALFORMED

    if header.get("alg") != QR_ALG:
        return TokenFailure.MALFORMED
    if payload.get("iss") != QR_ISS or payload.get("aud") != QR_AUD or payload.get("scope") != QR_SCOPE:
        return TokenFailure.MALFORMED

    nonce = payload.get("nonce")
    issued_at = payload.get("iat")
    if not isinstance(nonce, str) or not _NONCE_RE.match(nonce):
        return TokenFailure.MALFORMED
    if not isinstance(issued_at, int) or isinstance(issued_at, bool) or issued_at < 0:
        return TokenFailure.MALFORMED
    try:
        mess_id = uuid.UUID(str(payload.get("mess_id")))
    except ValueError:
        return TokenFailure.MALFORMED

    return DecodedToken(
        mess_id=mess_id,
        nonce=nonce,
        issued_at=issued_at,
        signature=token.rsplit(".", 1)[1],
        token=token,
    )


def verify(decoded: DecodedToken, secret: str) -> bool:
    """Recompute the canonical token under ``secret`` and compare in constant time.

    Comparing the whole token rather than the decoded signature bytes means any
    change to the scanned text, including base64 padding bits, fails.
    """
    expected = encode(decoded.mess_id, decoded.nonce, decoded.issued_at, secret)
    return hmac.compare_digest(expected.encode("utf-8"), decoded.token.encode("utf-8"))


def is_expired(decoded: DecodedToken, *, now: datetime, max_age_days: int | None) -> bool:
    if max_age_days is None:
        return False
    issued = datetime.fromtimestamp(decoded.issued_at, tz=timezone.utc)
    return now - issued > timedelta(days=max_age_days)
