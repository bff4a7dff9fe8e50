from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from .db import dispose_db, init_db
from .routers import mess_qr
from .core.config import get_settings
from .core.redis import ping_redis
from .core.nats import nats_connect, nats_close

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    if not settings.qr_secret:
        logger.warning("QR_SECRET not set; issued mess QR codes will stop verifying after a restart")
    # best-effort connect to infra; service still runs if these fail
    try:
        await nats_connect()
    except Exception as exc:
        logger.warning("NATS unavailable at startup: %s", exc)
    if settings.rl_enabled and not await ping_redis():
        logger.warning("Redis unavailable at startup; scan rate limiting will fail open")
    yield
    await nats_close()
    await dispose_db()

app = FastAPI(title="mess-qr-svc", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(mess_qr.router)

@app.get("/health")
async def health():
    return {"status": "ok", "service": "mess-qr-svc"}

Instrumentator().instrument(app).expose(app)
