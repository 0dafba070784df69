# visage/models.py
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, StrictStr


class FaceShape(str, Enum):
    OVAL = "Oval"
    ROUND = "Round"
    SQUARE = "Square"
    HEART = "Heart"
    DIAMOND = "Diamond"
    OBLONG = "Oblong"


class CaptureSource(str, Enum):
    UPLOADED = "uploaded"
    CAPTURED = "captured"


class Phase(str, Enum):
    IDLE = "idle"
    HAS_IMAGE = "has_image"
    ANALYZING = "analyzing"
    ANALYZED = "analyzed"


class CapturedImage(BaseModel):
    model_config = ConfigDict(frozen=True)

    data_uri: str  # data:image/jpeg;base64,...
    source: CaptureSource
    width: int
    height: int
    captured_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def _json_number(value):
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("must be a JSON number")
    return value


# Finite JSON number; no coercion from strings or booleans
Number = Annotated[float, BeforeValidator(_json_number)]

# Models parsed from the classification response
RESPONSE_CONFIG = ConfigDict(allow_inf_nan=False)


class Landmark(BaseModel):
    model_config = RESPONSE_CONFIG

    label: StrictStr
    x: Number  # 0-100 percentage of image width, not clamped
    y: Number  # 0-100 percentage of image height, not clamped


class StyleTips(BaseModel):
    model_config = RESPONSE_CONFIG

    glasses: StrictStr
    hair: StrictStr
    makeup: StrictStr


class FaceShapeResponse(BaseModel):
    """The structured answer of the classification call."""

    model_config = RESPONSE_CONFIG

    shape: FaceShape
    confidence: Number
    description: StrictStr
    landmarks: List[Landmark]
    tips: StyleTips


class AnalysisResult(FaceShapeResponse):
    inspiration_image: Optional[str] = None  # data:image/png;base64,...


class SessionState(BaseModel):
    current_image: Optional[CapturedImage] = None
    result: Optional[AnalysisResult] = None
    analyzing: bool = False
    enriching: bool = False
    last_error: Optional[str] = None
    inspiration_unavailable: bool = False

    @property
    def phase(self) -> Phase:
        if self.current_image is None:
            return Phase.IDLE
        if self.analyzing:
            return Phase.ANALYZING
        if self.result is not None:
            return Phase.ANALYZED
        return Phase.HAS_IMAGE


class FramePayload(BaseModel):
    image: str  # base64 frame or data URI grabbed by the browser camera
    mirror: bool = True
