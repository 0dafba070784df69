# visage/presentation.py
"""
Maps session state to the JSON view the browser renders.
"""

from typing import Any, Dict

from .models import FaceShape, Phase, SessionState
from .utils import short_label

FACE_SHAPE_INFO: Dict[FaceShape, Dict[str, Any]] = {
    FaceShape.OVAL: {
        "title": "The Balanced Oval",
        "desc": "Considered the most versatile shape, ovals have balanced proportions and a slightly narrower chin than forehead.",
        "tips": {
            "glasses": "Most styles work, especially wide frames that maintain balance.",
            "hair": "Versatile: try long waves or a blunt bob.",
            "makeup": "Focus on highlighting the center of the face.",
        },
    },
    FaceShape.ROUND: {
        "title": "The Soft Round",
        "desc": "Characterized by soft angles, full cheeks, and width nearly equal to length.",
        "tips": {
            "glasses": "Angular or rectangular frames to add definition.",
            "hair": "High-volume styles or long layers to elongate the face.",
            "makeup": "Contour along the jawline and temples to create depth.",
        },
    },
    FaceShape.SQUARE: {
        "title": "The Strong Square",
        "desc": "Features a strong, broad forehead and a wide, angular jawline.",
        "tips": {
            "glasses": "Round or oval frames to soften the sharp angles.",
            "hair": "Soft curls or side-swept bangs help round out the edges.",
            "makeup": "Soften the jawline with subtle contouring.",
        },
    },
    FaceShape.HEART: {
        "title": "The Romantic Heart",
        "desc": "Wider forehead that tapers down to a narrow, pointed chin.",
        "tips": {
            "glasses": "Bottom-heavy frames or cat-eye styles to balance the width.",
            "hair": "Chin-length bobs or volume near the bottom of the face.",
            "makeup": "Highlight the chin and soften the forehead width.",
        },
    },
    FaceShape.DIAMOND: {
        "title": "The Elegant Diamond",
        "desc": "Wide cheekbones with a narrower forehead and chin of similar width.",
        "tips": {
            "glasses": "Oval or rimless frames to accentuate cheekbones.",
            "hair": "Side-swept bangs or tucking hair behind ears.",
            "makeup": "Focus on highlighting the forehead and chin.",
        },
    },
    FaceShape.OBLONG: {
        "title": "The Refined Oblong",
        "desc": "The face is significantly longer than it is wide, often with straight cheek lines.",
        "tips": {
            "glasses": "Wide frames with decorative temples to add width.",
            "hair": "Curled styles or chin-length cuts to add horizontal volume.",
            "makeup": "Apply blush horizontally to the apples of the cheeks.",
        },
    },
}


def build_view(session_id: str, state: SessionState) -> Dict[str, Any]:
    phase = state.phase
    result = state.result
    view = {
        "id": session_id,
        "phase": phase.value,
        "image": state.current_image.model_dump(mode="json") if state.current_image else None,
        "result": result.model_dump(mode="json") if result else None,
        "analyzing": state.analyzing,
        "enriching": state.enriching,
        "error": state.last_error,
        "inspiration_unavailable": state.inspiration_unavailable,
        "controls": {
            "can_analyze": phase == Phase.HAS_IMAGE,
            "can_reset": phase != Phase.ANALYZING,
            "can_capture": True,
        },
        "shape_info": None,
        "confidence_pct": None,
        "landmark_labels": [],
    }
    if result is not None:
        view["shape_info"] = FACE_SHAPE_INFO.get(result.shape)
        view["confidence_pct"] = round(result.confidence * 100)
        view["landmark_labels"] = [short_label(lm.label) for lm in result.landmarks]
    return view
