# visage/gemini.py
"""
Async client for the two Gemini generateContent calls.

- analyze_face_shape: image + fixed prompt + response schema -> AnalysisResult
- generate_inspiration_image: styling prompt -> PNG data URI (or None)

No retries. Every failure is raised as one of MissingCredential,
NetworkOrServerError, MalformedResponse or NoImageProduced.
"""

from typing import Any, Dict, Optional

import httpx
from rich.markup import escape

from . import config
from .errors import MalformedResponse, MissingCredential, NetworkOrServerError, NoImageProduced
from .logger import console
from .models import AnalysisResult, CapturedImage, FaceShape, StyleTips
from .schema import ANALYSIS_PROMPT, RESPONSE_SCHEMA, inspiration_prompt, parse_analysis
from .utils import split_data_uri

INSPIRATION_ASPECT_RATIO = "3:4"


class GeminiClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = config.GEMINI_API_BASE,
        analysis_model: str = config.GEMINI_ANALYSIS_MODEL,
        image_model: str = config.GEMINI_IMAGE_MODEL,
        timeout: float = config.GEMINI_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self.analysis_model = analysis_model
        self.image_model = image_model
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/",
            timeout=timeout,
            transport=transport,
        )

    @property
    def api_key(self) -> Optional[str]:
        return self._api_key or config.get_api_key()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _generate(self, model: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        api_key = self.api_key
        if not api_key:
            raise MissingCredential()

        try:
            resp = await self._http.post(
                f"models/{model}:generateContent",
                headers={"x-goog-api-key": api_key},
                json=payload,
            )
        except httpx.HTTPError as exc:
            console.log(f"[fail]Upstream request error ({model}): {escape(str(exc))}[/fail]")
            raise NetworkOrServerError() from exc

        if not resp.is_success:
            console.log(
                f"[fail]Upstream non-2xx status={resp.status_code} ({model}) "
                f"body={escape(resp.text[:300])}[/fail]"
            )
            raise NetworkOrServerError()

        try:
            data = resp.json()
        except ValueError as exc:
            raise MalformedResponse() from exc
        if not isinstance(data, dict):
            raise MalformedResponse()
        return data

    async def analyze_face_shape(self, image: CapturedImage) -> AnalysisResult:
        mime_type, b64 = split_data_uri(image.data_uri)
        payload = {
            "contents": [
                {
                    "parts": [
                        {"inlineData": {"mimeType": mime_type or "image/jpeg", "data": b64}},
                        {"text": ANALYSIS_PROMPT},
                    ]
                }
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": RESPONSE_SCHEMA,
            },
        }
        data = await self._generate(self.analysis_model, payload)
        return parse_analysis(response_text(data))

    async def generate_inspiration_image(self, shape: FaceShape, tips: StyleTips) -> Optional[str]:
        if not self.api_key:
            # No credential: skip the image
            return None

        payload = {
            "contents": [{"parts": [{"text": inspiration_prompt(shape, tips)}]}],
            "generationConfig": {
                "imageConfig": {"aspectRatio": INSPIRATION_ASPECT_RATIO},
            },
        }
        data = await self._generate(self.image_model, payload)
        inline = first_inline_data(data)
        if inline is None:
            raise NoImageProduced()
        mime_type = inline.get("mimeType") or "image/png"
        return f"data:{mime_type};base64,{inline['data']}"


def _parts(data: Dict[str, Any]):
    candidates = data.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return []
    content = candidates[0].get("content") or {}
    return [p for p in content.get("parts") or [] if isinstance(p, dict)]


def response_text(data: Dict[str, Any]) -> str:
    """Concatenated text parts of the first candidate."""
    return "".join(p["text"] for p in _parts(data) if isinstance(p.get("text"), str))


def first_inline_data(data: Dict[str, Any]) -> Optional[Dict[str, str]]:
    for p in _parts(data):
        inline = p.get("inlineData")
        if isinstance(inline, dict) and inline.get("data"):
            return inline
    return None
