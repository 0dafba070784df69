# visage/orchestrator.py
"""
Per-session state machine: idle -> has_image -> analyzing -> analyzed.

Work that suspends (camera open, classification call, inspiration image)
is tagged with the session generation when it starts. Any new capture,
camera open or reset bumps the generation, and a response that arrives
for an older generation is dropped without touching state.

The inspiration image is fire-and-forget: it runs as its own task after
the result is committed and can only ever fill `result.inspiration_image`.
"""

import asyncio
import time
from typing import Optional, Tuple

from rich.markup import escape

from .capture import CaptureProvider
from .errors import AnalysisNotAllowed, NetworkOrServerError, VisageError
from .gemini import GeminiClient
from .logger import console
from .metrics import ANALYSES_COMPLETED, ANALYSIS_SECONDS, ENRICHMENTS_COMPLETED, STALE_DISCARDED
from .models import AnalysisResult, CapturedImage, Phase, SessionState


class AnalysisOrchestrator:
    def __init__(self, client: GeminiClient, capture: Optional[CaptureProvider] = None, name: str = ""):
        self.client = client
        self.capture = capture or CaptureProvider()
        self.name = name
        self.generation = 0
        self._state = SessionState()
        self._analysis_task: Optional[asyncio.Task] = None
        self._enrichment_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> SessionState:
        return self._state.model_copy()

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def enrichment_task(self) -> Optional[asyncio.Task]:
        return self._enrichment_task

    def _is_current(self, generation: int) -> bool:
        return generation == self.generation

    def _replace(self, image: Optional[CapturedImage]) -> None:
        """Start a new generation holding only `image` (or nothing)."""
        self.generation += 1
        self._state = SessionState(current_image=image)

    # ---- capture ----

    def set_image(self, image: CapturedImage) -> None:
        self._replace(image)
        console.log(
            f"[event]Session {self.name} has new {image.source.value} image "
            f"{image.width}x{image.height} (gen {self.generation})[/event]"
        )

    async def capture_from_file(self, data: bytes) -> CapturedImage:
        generation = self.generation
        image = await asyncio.to_thread(self.capture.capture_from_file, data)
        self._commit_capture(generation, image)
        return image

    async def capture_from_frame(self, b64: str, mirror: bool = True) -> CapturedImage:
        generation = self.generation
        image = await asyncio.to_thread(self.capture.capture_from_frame, b64, mirror)
        self._commit_capture(generation, image)
        return image

    def _commit_capture(self, generation: int, image: CapturedImage) -> None:
        # A reset or another capture landed while this one was decoding
        if not self._is_current(generation):
            STALE_DISCARDED.labels(step="capture").inc()
            console.log(f"[warn]Session {self.name} dropped stale {image.source.value} image (gen {generation})[/warn]")
            return
        self.set_image(image)

    async def open_camera(self):
        """Clear the session and open the camera for a new capture."""
        self._replace(None)
        generation = self.generation
        try:
            return await self.capture.open_camera()
        except VisageError as exc:
            if self._is_current(generation):
                self._state.last_error = exc.message
            raise

    async def snapshot_camera(self) -> CapturedImage:
        generation = self.generation
        try:
            image = await self.capture.snapshot()
        except VisageError as exc:
            if self._is_current(generation):
                self._state.last_error = exc.message
            raise
        self._commit_capture(generation, image)
        return image

    def close_camera(self) -> None:
        self.capture.close_camera()

    # ---- analysis ----

    def _begin_analysis(self) -> Tuple[int, CapturedImage]:
        phase = self.phase
        if phase != Phase.HAS_IMAGE:
            raise AnalysisNotAllowed(f"Cannot analyze while {phase.value}.")

        self._state.analyzing = True
        self._state.last_error = None
        self._state.inspiration_unavailable = False
        console.log(f"[event]Session {self.name} analyzing (gen {self.generation})[/event]")
        return self.generation, self._state.current_image

    async def analyze(self) -> Optional[AnalysisResult]:
        """
        Classify the current image.

        Returns the committed result, or None when the call failed (the
        message is in `last_error`) or the session moved on meanwhile.
        """
        generation, image = self._begin_analysis()
        return await self._run_analysis(generation, image)

    def start_analysis(self) -> asyncio.Task:
        """Like analyze(), but returns at once with the call running as a task."""
        generation, image = self._begin_analysis()
        self._analysis_task = asyncio.get_running_loop().create_task(
            self._run_analysis(generation, image)
        )
        return self._analysis_task

    async def _run_analysis(self, generation: int, image: CapturedImage) -> Optional[AnalysisResult]:
        started = time.perf_counter()
        try:
            result = await self.client.analyze_face_shape(image)
        except VisageError as exc:
            ANALYSIS_SECONDS.observe(time.perf_counter() - started)
            if not self._is_current(generation):
                STALE_DISCARDED.labels(step="analysis").inc()
                console.log(f"[warn]Session {self.name} dropped stale analysis error (gen {generation})[/warn]")
                return None
            ANALYSES_COMPLETED.labels(outcome=exc.kind).inc()
            self._state.analyzing = False
            self._state.last_error = exc.message
            console.log(f"[fail]Session {self.name} analysis failed: {exc.kind}: {exc.message}[/fail]")
            return None
        except Exception as exc:
            if not self._is_current(generation):
                STALE_DISCARDED.labels(step="analysis").inc()
                return None
            ANALYSES_COMPLETED.labels(outcome="error").inc()
            self._state.analyzing = False
            self._state.last_error = NetworkOrServerError().message
            console.log(f"[fail]Session {self.name} analysis crashed: {escape(repr(exc))}[/fail]")
            return None
        except BaseException:
            # cancelled
            if self._is_current(generation):
                self._state.analyzing = False
            raise

        ANALYSIS_SECONDS.observe(time.perf_counter() - started)
        if not self._is_current(generation):
            STALE_DISCARDED.labels(step="analysis").inc()
            console.log(f"[warn]Session {self.name} dropped stale analysis (gen {generation})[/warn]")
            return None

        self._state.analyzing = False
        self._state.result = result
        ANALYSES_COMPLETED.labels(outcome="analyzed").inc()
        console.log(
            f"[ok]Session {self.name} analyzed: {result.shape.value} "
            f"({result.confidence:.2f}, {len(result.landmarks)} landmarks)[/ok]"
        )

        self._state.enriching = True
        self._enrichment_task = asyncio.get_running_loop().create_task(
            self._enrich(generation, result)
        )
        return result

    async def _enrich(self, generation: int, result: AnalysisResult) -> None:
        """Best-effort inspiration image; never raises, never sets last_error."""
        outcome = "attached"
        image = None
        try:
            image = await self.client.generate_inspiration_image(result.shape, result.tips)
            if image is None:
                outcome = "skipped"
        except VisageError as exc:
            outcome = exc.kind
            console.log(f"[warn]Session {self.name} inspiration image failed: {exc.kind}[/warn]")
        except Exception as exc:
            outcome = "error"
            console.log(f"[fail]Session {self.name} inspiration image crashed: {escape(str(exc))}[/fail]")

        current = self._is_current(generation) and self._state.result is result
        if not current:
            STALE_DISCARDED.labels(step="enrichment").inc()
            console.log(f"[warn]Session {self.name} dropped stale inspiration image (gen {generation})[/warn]")
            return

        self._state.enriching = False
        ENRICHMENTS_COMPLETED.labels(outcome=outcome).inc()
        if image is None:
            self._state.inspiration_unavailable = True
            console.log(f"[warn]Session {self.name} inspiration image unavailable ({outcome})[/warn]")
            return

        if result.inspiration_image is None:
            result.inspiration_image = image
            console.log(f"[ok]Session {self.name} inspiration image attached[/ok]")

    # ---- reset / teardown ----

    def reset(self) -> None:
        self.capture.close_camera()
        self._replace(None)
        console.log(f"[event]Session {self.name} reset (gen {self.generation})[/event]")

    async def aclose(self) -> None:
        self.reset()
        tasks = [t for t in (self._analysis_task, self._enrichment_task) if t is not None and not t.done()]
        self._analysis_task = self._enrichment_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
