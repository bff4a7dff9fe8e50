from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from .camera import (
    PERMISSION_MESSAGE,
    CameraError,
    CameraPermissionDenied,
    CameraProvider,
    CameraStream,
    stop_stream,
)

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 0.3
MAX_READ_FAILURES = 20
STREAM_LOST_MESSAGE = "Camera stream was interrupted. Try again or enter the code manually."

FrameDecoder = Callable[[Any], "str | None"]


class ScanState(str, Enum):
    IDLE = "idle"
    REQUESTING_CAMERA = "requesting_camera"
    SCANNING = "scanning"
    DECODED = "decoded"
    CANCELLED = "cancelled"
    ERROR = "error"


TERMINAL_STATES = frozenset({ScanState.DECODED, ScanState.CANCELLED, ScanState.ERROR})


@dataclass(frozen=True)
class ScanOutcome:
    state: ScanState
    data: str | None = None
    source: str | None = None  # "camera" or "manual"
    error: str | None = None


class ScanSession:
    """Camera scan loop for a single QR code.

    ``start()`` requests the camera and then samples a frame every ``interval``
    seconds. At most one decode attempt runs at a time; ticks that find an
    attempt still running are skipped, never queued. The camera stream is
    stopped exactly once whichever way the session ends (decode, ``cancel()``,
    stream loss, or leaving an ``async with`` block), including when the camera
    is granted after the session was already cancelled.

    Manual entry (``submit_manual``) bypasses the camera and yields the same
    kind of outcome as an optical decode.
    """

    def __init__(
        self,
        camera: CameraProvider,
        *,
        decoder: FrameDecoder | None = None,
        interval: float = DEFAULT_INTERVAL,
        max_read_failures: int = MAX_READ_FAILURES,
        on_state_change: Callable[[ScanState], None] | None = None,
    ):
        if decoder is None:
            from .decoder import decode_frame
            decoder = decode_frame
        self._camera = camera
        self._decoder = decoder
        self.interval = interval
        self.max_read_failures = max_read_failures
        self._on_state_change = on_state_change

        self.state = ScanState.IDLE
        self.outcome: ScanOutcome | None = None
        self.attempts = 0
        self.skipped_ticks = 0
        self._read_failures = 0
        self._stream: CameraStream | None = None
        self._runner: asyncio.Task | None = None
        self._attempt: asyncio.Task | None = None
        self._done: asyncio.Future | None = None

    async def __aenter__(self) -> "ScanSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.cancel()
        await self._join()

    # --- public API

    def start(self) -> None:
        if self.state in TERMINAL_STATES:
            self.reset()
        if self.state is not ScanState.IDLE:
            raise RuntimeError(f"scan already in progress ({self.state.value})")
        self.outcome = None
        self.attempts = 0
        self.skipped_ticks = 0
        self._read_failures = 0
        self._done = asyncio.get_running_loop().create_future()
        self._set_state(ScanState.REQUESTING_CAMERA)
        self._runner = asyncio.create_task(self._run())

    async def wait(self) -> ScanOutcome:
        if self._done is None:
            raise RuntimeError("scan was never started")
        await asyncio.shield(self._done)
        if self.outcome is None:
            raise RuntimeError("scan finished without an outcome")
        return self.outcome

    def cancel(self) -> None:
        """Stop scanning and release the camera. Safe to call at any time, any number of times."""
        if self.state is ScanState.IDLE or self.state in TERMINAL_STATES:
            return
        self._finish(ScanOutcome(state=ScanState.CANCELLED))

    def submit_manual(self, text: str) -> ScanOutcome:
        if self.state not in (ScanState.SCANNING, ScanState.ERROR):
            raise RuntimeError(f"manual entry is not available while {self.state.value}")
        code = (text or "").strip()
        if not code:
            raise ValueError("Please enter a code")
        outcome = ScanOutcome(state=ScanState.DECODED, data=code, source="manual")
        self._finish(outcome)
        return outcome

    def reset(self) -> None:
        if self.state not in TERMINAL_STATES:
            self.cancel()
        self._release()
        self._runner = None
        self._attempt = None
        self._set_state(ScanState.IDLE)

    # --- internals

    def _set_state(self, state: ScanState) -> None:
        if state is self.state:
            return
        logger.debug("scan state %s -> %s", self.state.value, state.value)
        self.state = state
        if self._on_state_change is not None:
            self._on_state_change(state)

    def _release(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stop_stream(stream)
            logger.debug("camera released")

    def _finish(self, outcome: ScanOutcome) -> None:
        self.outcome = outcome
        self._release()
        current = asyncio.current_task()
        for task in (self._attempt, self._runner):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._set_state(outcome.state)
        if self._done is not None and not self._done.done():
            self._done.set_result(outcome)

    async def _join(self) -> None:
        tasks = [t for t in (self._runner, self._attempt) if t is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self) -> None:
        acquire = asyncio.ensure_future(self._camera())
        stream = None
        adopted = False
        try:
            try:
                stream = await asyncio.shield(acquire)
            except CameraPermissionDenied:
                self._finish(ScanOutcome(state=ScanState.ERROR, error=PERMISSION_MESSAGE))
                return
            except CameraError as e:
                self._finish(ScanOutcome(state=ScanState.ERROR, error=str(e) or PERMISSION_MESSAGE))
                return
            except Exception:
                logger.exception("camera request failed")
                self._finish(ScanOutcome(state=ScanState.ERROR, error=PERMISSION_MESSAGE))
                return
            self._stream = stream
            adopted = True
            self._set_state(ScanState.SCANNING)
            await self._tick()
        except asyncio.CancelledError:
            if not acquire.done():
                # the grant may still arrive; stop it the moment it does
                acquire.add_done_callback(_stop_late_stream)
            elif not adopted:
                _stop_late_stream(acquire)
            raise
        finally:
            # a reset session may already hold a newer stream
            if adopted and self._stream is stream:
                self._release()

    async def _tick(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while self.state is ScanState.SCANNING:
            if self._attempt is None or self._attempt.done():
                self._attempt = asyncio.create_task(self._try_decode())
            else:
                self.skipped_ticks += 1
            next_tick = max(next_tick + self.interval, loop.time())
            await asyncio.sleep(next_tick - loop.time())

    async def _try_decode(self) -> None:
        stream = self._stream
        if stream is None:
            return
        try:
            frame = await stream.read_frame()
        except Exception as exc:
            logger.debug("frame read failed: %s", exc)
            frame = None
        if frame is None:
            self._read_failures += 1
            if self._read_failures >= self.max_read_failures and self.state is ScanState.SCANNING:
                logger.warning("camera stream lost after %d failed reads", self._read_failures)
                self._finish(ScanOutcome(state=ScanState.ERROR, error=STREAM_LOST_MESSAGE))
            return
        self._read_failures = 0
        self.attempts += 1
        try:
            data = await asyncio.to_thread(self._decoder, frame)
        except Exception as exc:
            # one unreadable frame is not a failure of the scan
            logger.debug("frame decode failed: %s", exc)
            return
        if data and self.state is ScanState.SCANNING:
            logger.info("QR code decoded after %d attempt(s)", self.attempts)
            self._finish(ScanOutcome(state=ScanState.DECODED, data=data, source="camera"))


def _stop_late_stream(fut: asyncio.Future) -> None:
    if fut.cancelled() or fut.exception() is not None:
        return
    stop_stream(fut.result())
    logger.debug("late camera grant released")
