from __future__ import annotations
import asyncio
import logging
import threading
from typing import Any, Awaitable, Callable, Protocol, Sequence
import cv2

logger = logging.getLogger(__name__)

PERMISSION_MESSAGE = "Unable to access camera. Please grant camera permissions."


class CameraError(Exception):
    pass


class CameraPermissionDenied(CameraError):
    pass


class CameraUnavailable(CameraError):
    pass


class CameraTrack(Protocol):
    ready_state: str  # "live" until stopped, then "ended"

    def stop(self) -> None: ...


class CameraStream(Protocol):
    tracks: Sequence[CameraTrack]

    async def read_frame(self) -> Any | None: ...


CameraProvider = Callable[[], Awaitable[CameraStream]]


def stop_stream(stream: CameraStream) -> None:
    for track in stream.tracks:
        track.stop()


class OpenCVTrack:
    """A single ``cv2.VideoCapture`` device. Reads and release are serialized."""

    def __init__(self, capture: cv2.VideoCapture):
        self._capture = capture
        self._lock = threading.Lock()
        self.ready_state = "live"

    def read(self):
        with self._lock:
            if self.ready_state != "live":
                return None
            ok, frame = self._capture.read()
        return frame if ok else None

    def stop(self) -> None:
        with self._lock:
            if self.ready_state == "ended":
                return
            self.ready_state = "ended"
            self._capture.release()


class OpenCVCameraStream:
    def __init__(self, track: OpenCVTrack):
        self.tracks = [track]

    async def read_frame(self):
        return await asyncio.to_thread(self.tracks[0].read)


def _open_capture(index: int, width: int, height: int) -> cv2.VideoCapture:
    capture = cv2.VideoCapture(index)
    if not capture.isOpened():
        capture.release()
        # OpenCV does not tell a missing device from a denied one
        raise CameraUnavailable(PERMISSION_MESSAGE)
    capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
    capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
    return capture


def opencv_camera(index: int = 0, *, width: int = 1280, height: int = 720) -> CameraProvider:
    async def request() -> CameraStream:
        capture = await asyncio.to_thread(_open_capture, index, width, height)
        logger.info("camera %d opened", index)
        return OpenCVCameraStream(OpenCVTrack(capture))
    return request
