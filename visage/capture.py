# visage/capture.py
"""
Image acquisition for a session.

Every source ends up as a CapturedImage holding a JPEG data URI:
- an uploaded file (any Pillow-readable format, re-encoded)
- a frame grabbed by the browser camera
- a snapshot from a local camera device (OpenCV)

The provider owns at most one open camera device. A device that finishes
opening after the camera was closed, or after a newer open was requested,
is released on arrival.
"""

import asyncio
import os
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

import cv2
from PIL import ImageOps
from rich.markup import escape

from . import config
from .errors import DeviceUnavailable, PermissionDenied, VisageError
from .logger import console
from .metrics import CAMERAS_OPEN, CAPTURES, STALE_DISCARDED
from .models import CaptureSource, CapturedImage
from .utils import (
    base64_to_pil,
    bgr_to_jpeg_data_uri,
    bytes_to_pil,
    mirror_frame,
    pil_to_jpeg_data_uri,
)


def open_video_device(index: int) -> Any:
    """Default opener: an OpenCV VideoCapture that is known to be open."""
    path = f"/dev/video{index}"
    if os.path.exists(path) and not os.access(path, os.R_OK | os.W_OK):
        raise PermissionDenied()

    cap = cv2.VideoCapture(index)
    if not cap.isOpened():
        cap.release()
        raise DeviceUnavailable()
    return cap


class CameraHandle:
    """An open device. The device object only needs read() and release()."""

    def __init__(self, handle_id: int, device: Any):
        self.id = handle_id
        self.device = device
        self.released = False

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        self.device.release()


class CaptureProvider:
    def __init__(
        self,
        opener: Callable[[int], Any] = None,
        camera_index: int = config.CAMERA_INDEX,
        jpeg_quality: int = config.JPEG_QUALITY,
    ):
        self._opener = opener or open_video_device
        self.camera_index = camera_index
        self.jpeg_quality = jpeg_quality
        self._request_id = 0
        self._handle: Optional[CameraHandle] = None

    @property
    def open_handles(self) -> int:
        return 0 if self._handle is None else 1

    @property
    def handle(self) -> Optional[CameraHandle]:
        return self._handle

    # ---- still images ----

    def capture_from_file(self, data: bytes) -> CapturedImage:
        img = bytes_to_pil(data)
        CAPTURES.labels(source=CaptureSource.UPLOADED.value).inc()
        return CapturedImage(
            data_uri=pil_to_jpeg_data_uri(img, self.jpeg_quality),
            source=CaptureSource.UPLOADED,
            width=img.width,
            height=img.height,
        )

    def capture_from_frame(self, b64: str, mirror: bool = True) -> CapturedImage:
        img = base64_to_pil(b64)
        if mirror:
            img = ImageOps.mirror(img)
        CAPTURES.labels(source=CaptureSource.CAPTURED.value).inc()
        return CapturedImage(
            data_uri=pil_to_jpeg_data_uri(img, self.jpeg_quality),
            source=CaptureSource.CAPTURED,
            width=img.width,
            height=img.height,
        )

    # ---- camera lifecycle ----

    async def open_camera(self) -> Optional[CameraHandle]:
        """
        Open the camera device.

        Returns None when the camera was closed (or reopened) before the
        device became available; that device has already been released.
        """
        self._release_current()
        self._request_id += 1
        request_id = self._request_id

        try:
            device = await asyncio.to_thread(self._opener, self.camera_index)
        except VisageError as exc:
            console.log(f"[fail]Camera {self.camera_index} unavailable: {exc.message}[/fail]")
            raise
        except PermissionError as exc:
            console.log(f"[fail]Camera {self.camera_index} permission denied: {escape(str(exc))}[/fail]")
            raise PermissionDenied() from exc
        except OSError as exc:
            console.log(f"[fail]Camera {self.camera_index} failed to open: {escape(str(exc))}[/fail]")
            raise DeviceUnavailable() from exc

        if request_id != self._request_id:
            device.release()
            STALE_DISCARDED.labels(step="camera").inc()
            console.log(f"[warn]Camera open {request_id} superseded, device released[/warn]")
            return None

        self._handle = CameraHandle(request_id, device)
        CAMERAS_OPEN.inc()
        console.log(f"[ok]Camera {self.camera_index} open (handle {request_id})[/ok]")
        return self._handle

    async def snapshot(self, handle: Optional[CameraHandle] = None) -> CapturedImage:
        """
        Grab one mirrored frame and release the camera.

        The handle is detached before the read, so a close_camera() issued
        meanwhile finds nothing to release; the worker releases it.
        """
        handle = handle or self._handle
        if handle is None or handle is not self._handle:
            raise DeviceUnavailable("The camera is not open.")

        self._handle = None
        CAMERAS_OPEN.dec()
        image = await asyncio.to_thread(self._read_frame, handle)
        CAPTURES.labels(source=CaptureSource.CAPTURED.value).inc()
        return image

    def _read_frame(self, handle: CameraHandle) -> CapturedImage:
        try:
            ok, frame = handle.device.read()
        finally:
            handle.release()
            console.log(f"[event]Camera handle {handle.id} released[/event]")

        if not ok or frame is None:
            raise DeviceUnavailable("Could not read a frame from the camera.")

        height, width = frame.shape[:2]
        return CapturedImage(
            data_uri=bgr_to_jpeg_data_uri(mirror_frame(frame), self.jpeg_quality),
            source=CaptureSource.CAPTURED,
            width=width,
            height=height,
        )

    def close_camera(self) -> None:
        """Release the open device, if any, and cancel a pending open."""
        self._request_id += 1
        self._release_current()

    @asynccontextmanager
    async def camera(self):
        handle = await self.open_camera()
        try:
            yield handle
        finally:
            self.close_camera()

    def _release_current(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        handle.release()
        CAMERAS_OPEN.dec()
        console.log(f"[event]Camera handle {handle.id} released[/event]")
