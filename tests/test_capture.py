# tests/test_capture.py
import asyncio
import base64
import io
import threading
import time

import numpy as np
import pytest
from PIL import Image

from conftest import FakeDevice, jpeg_bytes, png_bytes
from visage.capture import CaptureProvider
from visage.errors import DeviceUnavailable, InvalidImage, PermissionDenied
from visage.models import CaptureSource
from visage.utils import base64_to_pil


def split_frame() -> np.ndarray:
    """64x32 BGR frame: red left half, blue right half."""
    frame = np.zeros((32, 64, 3), dtype=np.uint8)
    frame[:, :32] = (0, 0, 255)
    frame[:, 32:] = (255, 0, 0)
    return frame


def test_upload_is_normalized_to_jpeg():
    image = CaptureProvider().capture_from_file(png_bytes(64, 48))
    assert image.source is CaptureSource.UPLOADED
    assert image.data_uri.startswith("data:image/jpeg;base64,")
    assert (image.width, image.height) == (64, 48)
    assert base64_to_pil(image.data_uri).mode == "RGB"


def test_upload_keeps_dimensions():
    image = CaptureProvider().capture_from_file(jpeg_bytes(640, 480))
    assert (image.width, image.height) == (640, 480)


@pytest.mark.parametrize("data", [b"", b"not an image", b"\x89PNG\r\n\x1a\n broken"])
def test_undecodable_upload_is_rejected(data):
    with pytest.raises(InvalidImage):
        CaptureProvider().capture_from_file(data)


def test_captured_image_is_immutable():
    image = CaptureProvider().capture_from_file(jpeg_bytes(32, 32))
    with pytest.raises(Exception):
        image.data_uri = "data:image/jpeg;base64,AAAA"


def browser_frame(data_uri: bool = True) -> str:
    """The split frame as the browser would post it (RGB PNG)."""
    buf = io.BytesIO()
    Image.fromarray(split_frame()[:, :, ::-1].copy()).save(buf, format="PNG")
    payload = base64.b64encode(buf.getvalue()).decode("ascii")
    return "data:image/png;base64," + payload if data_uri else payload


def test_browser_frame_is_mirrored():
    image = CaptureProvider().capture_from_frame(browser_frame())
    assert image.source is CaptureSource.CAPTURED
    pixels = np.array(base64_to_pil(image.data_uri))
    left, right = pixels[16, 8], pixels[16, 56]
    assert left[2] > 200 and left[0] < 60   # blue now on the left
    assert right[0] > 200 and right[2] < 60  # red now on the right


def test_browser_frame_without_mirroring():
    image = CaptureProvider().capture_from_frame(browser_frame(data_uri=False), mirror=False)
    pixels = np.array(base64_to_pil(image.data_uri))
    assert pixels[16, 8][0] > 200


def test_invalid_frame_base64_is_rejected():
    with pytest.raises(InvalidImage):
        CaptureProvider().capture_from_frame("data:image/png;base64,@@@@")


def test_snapshot_mirrors_encodes_and_releases():
    device = FakeDevice(frame=split_frame())
    provider = CaptureProvider(opener=lambda index: device)

    async def main():
        handle = await provider.open_camera()
        assert provider.open_handles == 1
        return await provider.snapshot(handle)

    image = asyncio.run(main())
    assert image.source is CaptureSource.CAPTURED
    assert image.data_uri.startswith("data:image/jpeg;base64,")
    assert (image.width, image.height) == (64, 32)
    assert device.released
    assert provider.open_handles == 0

    pixels = np.array(base64_to_pil(image.data_uri))
    left = pixels[16, 8]
    assert left[2] > 200 and left[0] < 60


def test_failed_read_releases_device():
    device = FakeDevice(ok=False)
    provider = CaptureProvider(opener=lambda index: device)

    async def main():
        handle = await provider.open_camera()
        await provider.snapshot(handle)

    with pytest.raises(DeviceUnavailable):
        asyncio.run(main())
    assert device.released
    assert provider.open_handles == 0


def test_snapshot_without_open_camera_fails():
    with pytest.raises(DeviceUnavailable):
        asyncio.run(CaptureProvider(opener=lambda index: FakeDevice()).snapshot())


def test_close_camera_is_idempotent():
    device = FakeDevice()
    provider = CaptureProvider(opener=lambda index: device)
    provider.close_camera()

    async def main():
        await provider.open_camera()

    asyncio.run(main())
    provider.close_camera()
    provider.close_camera()
    assert device.released
    assert provider.open_handles == 0


def test_close_before_open_resolves_leaks_nothing():
    gate = threading.Event()
    devices = []

    def slow_opener(index):
        gate.wait(5)
        device = FakeDevice()
        devices.append(device)
        return device

    provider = CaptureProvider(opener=slow_opener)

    async def main():
        pending = asyncio.ensure_future(provider.open_camera())
        await asyncio.sleep(0)
        provider.close_camera()
        gate.set()
        return await pending

    assert asyncio.run(main()) is None
    assert provider.open_handles == 0
    assert len(devices) == 1 and devices[0].released


def test_second_open_force_closes_the_first():
    devices = []

    def opener(index):
        device = FakeDevice()
        devices.append(device)
        return device

    provider = CaptureProvider(opener=opener)

    async def main():
        first = await provider.open_camera()
        second = await provider.open_camera()
        return first, second

    first, second = asyncio.run(main())
    assert first.released
    assert not second.released
    assert provider.open_handles == 1
    assert provider.handle is second


def test_stale_handle_cannot_snapshot():
    provider = CaptureProvider(opener=lambda index: FakeDevice())

    async def main():
        first = await provider.open_camera()
        await provider.open_camera()
        return first

    first = asyncio.run(main())
    with pytest.raises(DeviceUnavailable):
        asyncio.run(provider.snapshot(first))


@pytest.mark.parametrize(
    "error, expected",
    [
        (PermissionError("denied"), PermissionDenied),
        (OSError("no such device"), DeviceUnavailable),
        (DeviceUnavailable(), DeviceUnavailable),
    ],
)
def test_open_failures_are_classified(error, expected):
    def opener(index):
        raise error

    provider = CaptureProvider(opener=opener)
    with pytest.raises(expected):
        asyncio.run(provider.open_camera())
    assert provider.open_handles == 0


def test_camera_context_releases_on_error():
    device = FakeDevice()
    provider = CaptureProvider(opener=lambda index: device)

    async def main():
        async with provider.camera() as handle:
            assert handle is not None
            raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        asyncio.run(main())
    assert device.released
    assert provider.open_handles == 0


def test_oversized_upload_is_rejected(monkeypatch):
    # 64x48 is more than twice the limit, which Pillow refuses to decode
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    with pytest.raises(InvalidImage):
        CaptureProvider().capture_from_file(png_bytes(64, 48))


class SlowDevice(FakeDevice):
    def read(self):
        time.sleep(0.3)
        return super().read()


def test_snapshot_does_not_block_the_event_loop():
    device = SlowDevice()
    provider = CaptureProvider(opener=lambda index: device)

    async def main():
        ticks = []
        stop = asyncio.Event()

        async def ticker():
            while not stop.is_set():
                ticks.append(time.perf_counter())
                await asyncio.sleep(0.02)

        await provider.open_camera()
        ticking = asyncio.ensure_future(ticker())
        await asyncio.sleep(0)
        image = await provider.snapshot()
        stop.set()
        await ticking
        return image, ticks

    image, ticks = asyncio.run(main())
    assert image.source is CaptureSource.CAPTURED
    assert len(ticks) >= 5
    assert max(b - a for a, b in zip(ticks, ticks[1:])) < 0.2
    assert device.released


def test_close_during_snapshot_does_not_release_twice():
    release_calls = []

    class CountingDevice(SlowDevice):
        def release(self):
            release_calls.append(1)
            super().release()

    provider = CaptureProvider(opener=lambda index: CountingDevice())

    async def main():
        await provider.open_camera()
        pending = asyncio.ensure_future(provider.snapshot())
        await asyncio.sleep(0)
        provider.close_camera()
        return await pending

    image = asyncio.run(main())
    assert image.source is CaptureSource.CAPTURED
    assert release_calls == [1]
    assert provider.open_handles == 0
