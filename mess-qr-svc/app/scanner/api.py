from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict
import httpx

from .loop import ScanOutcome, ScanSession, ScanState

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status_code: int, detail: str):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


@dataclass(frozen=True)
class VerificationReply:
    is_valid: bool
    message: str
    member: Dict[str, Any] | None = None


class MessQRClient:
    """Member-side client for the verify-membership endpoint."""

    def __init__(self, base_url: str, token: str, *, timeout: float = 5.0, transport: httpx.AsyncBaseTransport | None = None):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "MessQRClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def verify_membership(self, qr_code_data: str, *, source: str = "camera") -> VerificationReply:
        r = await self._client.post(
            "/mess-qr/verify-membership",
            json={"qr_code_data": qr_code_data, "source": source},
        )
        if r.status_code != 200:
            try:
                detail = r.json().get("detail", r.text)
            except ValueError:
                detail = r.text
            raise ApiError(r.status_code, str(detail))
        body = r.json()
        return VerificationReply(is_valid=bool(body.get("success")), message=body.get("message", ""), member=body.get("data"))


async def verify_manual(client: MessQRClient, text: str) -> VerificationReply:
    """Typed-in code, no camera involved."""
    code = (text or "").strip()
    if not code:
        raise ValueError("Please enter a code")
    return await client.verify_membership(code, source="manual")


async def scan_and_verify(
    session: ScanSession, client: MessQRClient, *, timeout: float | None = None
) -> tuple[ScanOutcome, VerificationReply | None]:
    """Run ``session`` until it ends and send any decoded text for verification.

    ``timeout`` bounds the scan only; raises ``asyncio.TimeoutError`` when no
    code is read in time, leaving the session running for the caller to cancel.
    """
    if session.state is ScanState.IDLE:
        session.start()
    outcome = await asyncio.wait_for(session.wait(), timeout)
    if outcome.state is not ScanState.DECODED or not outcome.data:
        return outcome, None
    logger.debug("submitting %s scan for verification", outcome.source)
    reply = await client.verify_membership(outcome.data, source=outcome.source or "camera")
    return outcome, reply
