# visage/schema.py
"""
Contract of the classification call: the prompt sent with the image, the
structured-output schema requested from the model, and validation of what
comes back.

A response is either a complete, valid AnalysisResult or a MalformedResponse.
Landmark coordinates are not range-checked here.
"""

import json
from typing import Any

from pydantic import ValidationError

from .errors import MalformedResponse
from .models import AnalysisResult, FaceShape, FaceShapeResponse, StyleTips

SHAPE_NAMES = [shape.value for shape in FaceShape]

LANDMARK_LABELS = [
    "hairline_top",
    "forehead_left",
    "forehead_right",
    "cheekbone_left",
    "cheekbone_right",
    "jaw_left",
    "jaw_right",
    "chin_bottom",
]

ANALYSIS_PROMPT = f"""
Analyze this human face image and determine its face shape ({", ".join(SHAPE_NAMES[:-1])}, or {SHAPE_NAMES[-1]}).
Identify key facial landmarks for the overlay:
- hairline_top
- forehead_left, forehead_right
- cheekbone_left, cheekbone_right
- jaw_left, jaw_right
- chin_bottom

Return the analysis in valid JSON format. Provide coordinates (x, y) as percentages (0-100) relative to the image dimensions.
""".strip()

# Gemini REST structured-output schema (OpenAPI subset, upper-case types)
RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "shape": {
            "type": "STRING",
            "enum": SHAPE_NAMES,
            "description": "One of: " + ", ".join(SHAPE_NAMES),
        },
        "confidence": {
            "type": "NUMBER",
            "description": "Confidence score between 0 and 1",
        },
        "description": {
            "type": "STRING",
            "description": "Short clinical description of the face structure",
        },
        "landmarks": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "label": {"type": "STRING"},
                    "x": {"type": "NUMBER"},
                    "y": {"type": "NUMBER"},
                },
                "required": ["label", "x", "y"],
            },
        },
        "tips": {
            "type": "OBJECT",
            "properties": {
                "glasses": {"type": "STRING"},
                "hair": {"type": "STRING"},
                "makeup": {"type": "STRING"},
            },
            "required": ["glasses", "hair", "makeup"],
        },
    },
    "required": ["shape", "confidence", "description", "landmarks", "tips"],
}


def parse_analysis(text: str) -> AnalysisResult:
    """Parse the model's JSON text into an AnalysisResult, all or nothing."""
    if not text or not text.strip():
        raise MalformedResponse("Empty response from AI model.")
    try:
        data = json.loads(text, parse_constant=_reject_constant)
    except ValueError as exc:
        raise MalformedResponse() from exc
    return validate_analysis(data)


def _reject_constant(name: str):
    # NaN, Infinity and -Infinity are not JSON
    raise ValueError(f"invalid JSON constant {name}")


def validate_analysis(data: Any) -> AnalysisResult:
    if not isinstance(data, dict):
        raise MalformedResponse()
    try:
        response = FaceShapeResponse.model_validate(data)
    except ValidationError as exc:
        raise MalformedResponse() from exc
    # Anything else the model sent (e.g. an image field) is dropped here
    return AnalysisResult(**response.model_dump())


def inspiration_prompt(shape: FaceShape, tips: StyleTips) -> str:
    return f"""
Create a professional, high-fashion aesthetic portrait of a person with a perfectly {FaceShape(shape).value} face shape.
Styling instructions to incorporate:
- Hair: {tips.hair}
- Eyewear: {tips.glasses}
The style should be clean, modern, and provide visual inspiration for grooming and fashion.
Focus on the facial structure and how the styling complements it. Soft studio lighting.
""".strip()
