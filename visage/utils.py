# visage/utils.py
import base64
import binascii
import html
import io
from typing import List, Tuple

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import InvalidImage
from .models import Landmark


def split_data_uri(b64: str) -> Tuple[str, str]:
    """
    Accepts either raw base64 or a data URI (data:image/jpeg;base64,...).
    Returns (mime_type, base64 payload); mime_type is "" for raw base64.
    """
    header, _, payload = b64.partition(",")
    if payload == "":
        return "", header
    mime = header[len("data:"):].split(";")[0] if header.startswith("data:") else ""
    return mime, payload


def base64_to_bytes(b64: str) -> bytes:
    _, payload = split_data_uri(b64)
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImage() from exc


def bytes_to_pil(data: bytes) -> Image.Image:
    """Decode any Pillow-readable image, upright and in RGB mode."""
    if not data:
        raise InvalidImage()
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError, SyntaxError) as exc:
        raise InvalidImage() from exc
    return ImageOps.exif_transpose(img).convert("RGB")


def base64_to_pil(b64: str) -> Image.Image:
    return bytes_to_pil(base64_to_bytes(b64))


def to_data_uri(data: bytes, mime_type: str) -> str:
    b64 = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{b64}"


def pil_to_jpeg_data_uri(img: Image.Image, quality: int = 90) -> str:
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return to_data_uri(buf.getvalue(), "image/jpeg")


def mirror_frame(frame: np.ndarray) -> np.ndarray:
    """Flip horizontally so the frame matches a front-camera preview."""
    return cv2.flip(frame, 1)


def bgr_to_jpeg_data_uri(frame: np.ndarray, quality: int = 90) -> str:
    """Encode an OpenCV BGR frame as a JPEG data URI."""
    ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        raise InvalidImage("Could not encode the camera frame.")
    return to_data_uri(buf.tobytes(), "image/jpeg")


def landmarks_to_svg(
    landmarks: List[Landmark],
    image_data_uri: str = None,
    width: int = 100,
    height: int = 100,
) -> str:
    """
    Builds an SVG overlay in percentage space (viewBox 0 0 100 100) containing:
    - Embedded source image (optional), stretched to the viewBox
    - A translucent polygon joining the landmarks in order
    - One marker and short label per landmark
    """
    svg_parts = [
        f'<svg xmlns="http://www.w3.org/2000/svg" '
        f'xmlns:xlink="http://www.w3.org/1999/xlink" '
        f'width="{width}" height="{height}" viewBox="0 0 100 100" '
        f'preserveAspectRatio="none">'
    ]

    if image_data_uri:
        data_uri_escaped = html.escape(image_data_uri, quote=True)
        svg_parts.append(
            f'<image x="0" y="0" width="100" height="100" '
            f'preserveAspectRatio="none" xlink:href="{data_uri_escaped}" />'
        )

    if landmarks:
        points = " ".join(f"{lm.x:g},{lm.y:g}" for lm in landmarks)
        svg_parts.append(
            f'<polygon points="{points}" fill="#3B82F6" fill-opacity="0.1" '
            f'stroke="#60A5FA" stroke-opacity="0.3" stroke-width="0.5" />'
        )

    for lm in landmarks:
        label = html.escape(short_label(lm.label))
        svg_parts.append(
            f'<g data-landmark="{html.escape(lm.label, quote=True)}">'
            f'<circle cx="{lm.x:g}" cy="{lm.y:g}" r="1" fill="#3B82F6" />'
            f'<text x="{lm.x + 1:g}" y="{lm.y - 1:g}" font-size="1.5" '
            f'fill="#2563EB">{label}</text></g>'
        )

    svg_parts.append("</svg>")
    return "".join(svg_parts)


def short_label(label: str) -> str:
    """'jaw_left' -> 'JAW'."""
    return label.split("_")[0].upper()
