# visage/main.py
import asyncio
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from . import config
from .errors import (
    AnalysisNotAllowed,
    DeviceUnavailable,
    InvalidImage,
    PermissionDenied,
    VisageError,
)
from .gemini import GeminiClient
from .logger import console
from .metrics import router as metrics_router
from .models import FramePayload
from .orchestrator import AnalysisOrchestrator
from .presentation import build_view
from .sessions import SessionStore
from .utils import landmarks_to_svg

ERROR_STATUS = {
    InvalidImage: 400,
    PermissionDenied: 403,
    AnalysisNotAllowed: 409,
    DeviceUnavailable: 503,
}


def _http_error(exc: VisageError) -> HTTPException:
    status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    return HTTPException(status_code=status, detail={"kind": exc.kind, "message": exc.message})


def create_app(
    gemini_client: Optional[GeminiClient] = None,
    camera_opener: Optional[Callable[[int], Any]] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = gemini_client or GeminiClient()
        app.state.sessions = SessionStore(client, camera_opener=camera_opener)
        if client.api_key is None:
            console.log("[warn]GEMINI_API_KEY is not set; analysis requests will fail[/warn]")
        sweeper = asyncio.get_event_loop().create_task(
            app.state.sessions.sweep(max(config.SESSION_IDLE_SECONDS / 4, 1.0))
        )
        console.log("[ok]Visage API ready[/ok]")
        yield
        sweeper.cancel()
        await asyncio.gather(sweeper, return_exceptions=True)
        # Closing every session releases any camera still held open
        await app.state.sessions.close_all()
        if gemini_client is None:
            await client.aclose()

    app = FastAPI(title="Visage Face Shape API", version="1.0.0", lifespan=lifespan)

    # Include /metrics endpoint
    app.include_router(metrics_router)

    def get_session(request: Request, session_id: str) -> AnalysisOrchestrator:
        session = request.app.state.sessions.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="session not found")
        return session

    def view(session_id: str, session: AnalysisOrchestrator) -> Dict[str, Any]:
        return build_view(session_id, session.state)

    @app.get("/")
    def read_root() -> Dict[str, str]:
        return {"status": "ok", "message": "Visage Face Shape API"}

    @app.post("/api/v1/sessions", status_code=201)
    async def create_session(request: Request):
        """Start a session for one browser tab."""
        sessions: SessionStore = request.app.state.sessions
        session_id = await sessions.create()
        return view(session_id, sessions.get(session_id))

    @app.get("/api/v1/sessions/{session_id}")
    async def get_session_view(request: Request, session_id: str):
        return view(session_id, get_session(request, session_id))

    @app.delete("/api/v1/sessions/{session_id}", status_code=204)
    async def close_session(request: Request, session_id: str):
        if not await request.app.state.sessions.close(session_id):
            raise HTTPException(status_code=404, detail="session not found")
        return Response(status_code=204)

    @app.post("/api/v1/sessions/{session_id}/upload")
    async def upload_image(
        request: Request,
        session_id: str,
        file: UploadFile = File(..., description="Face photo (JPG, PNG, ...)"),
    ):
        session = get_session(request, session_id)
        if file.content_type and not file.content_type.startswith("image/"):
            raise HTTPException(status_code=400, detail="Invalid file type. Please upload an image file.")

        data = await file.read()
        if len(data) > config.MAX_UPLOAD_BYTES:
            raise HTTPException(status_code=413, detail="Image too large.")

        try:
            await session.capture_from_file(data)
        except VisageError as exc:
            raise _http_error(exc)
        return view(session_id, session)

    @app.post("/api/v1/sessions/{session_id}/frame")
    async def submit_frame(request: Request, session_id: str, payload: FramePayload):
        """
        Accept a frame grabbed by the browser camera.

        Body:
          {
            "image": "<base64 or data URI>",
            "mirror": true
          }
        """
        session = get_session(request, session_id)
        try:
            await session.capture_from_frame(payload.image, mirror=payload.mirror)
        except VisageError as exc:
            raise _http_error(exc)
        return view(session_id, session)

    @app.post("/api/v1/sessions/{session_id}/camera/open")
    async def open_camera(request: Request, session_id: str):
        session = get_session(request, session_id)
        try:
            await session.open_camera()
        except VisageError as exc:
            raise _http_error(exc)
        return {**view(session_id, session), "camera_open": session.capture.open_handles > 0}

    @app.post("/api/v1/sessions/{session_id}/camera/snapshot")
    async def snapshot_camera(request: Request, session_id: str):
        session = get_session(request, session_id)
        try:
            await session.snapshot_camera()
        except VisageError as exc:
            raise _http_error(exc)
        return view(session_id, session)

    @app.post("/api/v1/sessions/{session_id}/camera/close")
    async def close_camera(request: Request, session_id: str):
        session = get_session(request, session_id)
        session.close_camera()
        return {**view(session_id, session), "camera_open": False}

    @app.post("/api/v1/sessions/{session_id}/analyze")
    async def analyze(
        request: Request,
        session_id: str,
        wait: bool = Query(
            False,
            description="If true, respond after the classification call finishes",
        ),
    ):
        """
        Classify the current image. Returns 202 while the call runs in the
        background, or the final view when `wait` is set.
        """
        session = get_session(request, session_id)
        try:
            if wait:
                await session.analyze()
            else:
                session.start_analysis()
        except AnalysisNotAllowed as exc:
            raise _http_error(exc)

        if wait:
            return view(session_id, session)
        return JSONResponse(status_code=202, content=view(session_id, session))

    @app.post("/api/v1/sessions/{session_id}/reset")
    async def reset(request: Request, session_id: str):
        session = get_session(request, session_id)
        session.reset()
        return view(session_id, session)

    @app.get("/api/v1/sessions/{session_id}/overlay.svg")
    async def landmark_overlay(request: Request, session_id: str):
        state = get_session(request, session_id).state
        if state.result is None:
            raise HTTPException(status_code=404, detail="no analysis result")
        image = state.current_image
        svg = landmarks_to_svg(
            state.result.landmarks,
            image_data_uri=image.data_uri,
            width=image.width,
            height=image.height,
        )
        return Response(content=svg, media_type="image/svg+xml")

    return app


app = create_app()
