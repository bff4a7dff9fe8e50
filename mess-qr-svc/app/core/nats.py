from __future__ import annotations
import json
import logging
from typing import Sequence
from nats.aio.client import Client as NATS
from .config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()
_nats = NATS()

async def nats_connect():
    if not _settings.nats_enabled:
        return
    if not _nats.is_connected:
        servers: Sequence[str] = [u.strip() for u in _settings.nats_urls.split(",") if u.strip()]
        await _nats.connect(servers=servers, connect_timeout=2, max_reconnect_attempts=3)

async def nats_close():
    try:
        if _nats.is_connected:
            await _nats.drain()
    except Exception as exc:
        logger.warning("NATS drain failed: %s", exc)

async def publish_verification(evt: dict):
    """
    evt = {
      "mess_id": str,
      "member_id": str,
      "method": "camera" | "manual" | "owner",
      "success": bool,
      "verified_at": iso8601
    }
    """
    if not _settings.nats_enabled:
        return
    await nats_connect()
    await _nats.publish(_settings.nats_subject_verification, json.dumps(evt).encode("utf-8"))
