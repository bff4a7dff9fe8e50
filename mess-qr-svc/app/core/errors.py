from __future__ import annotations
from enum import Enum


class TokenFailure(str, Enum):
    MALFORMED = "malformed"
    SIGNATURE_MISMATCH = "signature_mismatch"
    UNKNOWN_MESS = "unknown_mess"
    EXPIRED = "expired"


class MessQRError(Exception):
    """Base class for errors raised by the mess QR services."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthorizationError(MessQRError):
    """Caller is authenticated but has no rights over the target mess."""


class NotFound(MessQRError):
    pass


class NoActiveMembership(MessQRError):
    pass


class InvalidToken(MessQRError):
    """Scanned payload did not verify. Callers only ever see INVALID_CODE_MESSAGE."""

    reason: TokenFailure = TokenFailure.MALFORMED

    def __init__(self, reason: TokenFailure | None = None):
        super().__init__(INVALID_CODE_MESSAGE)
        if reason is not None:
            self.reason = reason


class MalformedToken(InvalidToken):
    reason = TokenFailure.MALFORMED


class SignatureMismatch(InvalidToken):
    reason = TokenFailure.SIGNATURE_MISMATCH


class UnknownMess(InvalidToken):
    reason = TokenFailure.UNKNOWN_MESS


class ExpiredToken(InvalidToken):
    reason = TokenFailure.EXPIRED


INVALID_CODE_MESSAGE = "Invalid QR code. Please scan the code displayed at your mess."

_BY_REASON: dict[TokenFailure, type[InvalidToken]] = {
    TokenFailure.MALFORMED: MalformedToken,
    TokenFailure.SIGNATURE_MISMATCH: SignatureMismatch,
    TokenFailure.UNKNOWN_MESS: UnknownMess,
    TokenFailure.EXPIRED: ExpiredToken,
}


def invalid_token(reason: TokenFailure) -> InvalidToken:
    return _BY_REASON[reason]()
