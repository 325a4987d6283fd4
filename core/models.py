"""
Pydantic data models shared by capture, analysis and overlay rendering.
"""
from __future__ import annotations
import base64
import logging
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


class CapturedFrame(BaseModel):
    """One encoded still frame, sized at the camera's intrinsic resolution."""
    model_config = ConfigDict(frozen=True)

    mime_type: str
    payload: bytes
    width: int
    height: int

    @property
    def data_uri(self) -> str:
        body = base64.b64encode(self.payload).decode("ascii")
        return f"data:{self.mime_type};base64,{body}"


class BoundingBox(BaseModel):
    # Normalized to the analyzed image, origin top-left. Range is not enforced here:
    # the overlay engine clamps or skips boxes that fall outside the unit square.
    x: float
    y: float
    width: float
    height: float


def _text_field(*names: str):
    return Field(default="", validation_alias=AliasChoices(*names))


class Detection(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    bounding_box: Optional[BoundingBox] = Field(
        default=None, validation_alias=AliasChoices("bounding_box", "boundingBox")
    )
    age_range_estimate: str = _text_field("age_range_estimate", "ageRangeEstimate", "estimatedAgeRange")
    gender_estimate: str = _text_field("gender_estimate", "genderEstimate", "estimatedGender")
    mood_estimate: str = _text_field("mood_estimate", "moodEstimate", "observedMood")
    behavior_estimate: str = _text_field("behavior_estimate", "behaviorEstimate", "observedBehavior")

    @field_validator("bounding_box", mode="before")
    @classmethod
    def _drop_unusable_box(cls, v):
        if v is None or isinstance(v, BoundingBox):
            return v
        try:
            return BoundingBox.model_validate(v)
        except ValidationError:
            logger.debug(f"[models] dropping unusable bounding box: {v!r}")
            return None

    @field_validator(
        "age_range_estimate", "gender_estimate", "mood_estimate", "behavior_estimate",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, v):
        if v is None:
            return ""
        return v if isinstance(v, str) else str(v)


class AnalysisResult(BaseModel):
    """Outcome of one analysis request: either a failure (error_message set) or detections."""
    model_config = ConfigDict(frozen=True)

    detections: List[Detection] = Field(default_factory=list)
    summary_text: str = ""
    error_message: Optional[str] = None

    @field_validator("error_message", mode="before")
    @classmethod
    def _blank_error_is_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @model_validator(mode="after")
    def _failure_has_no_detections(self):
        if self.error_message is not None and self.detections:
            raise ValueError("a failed analysis cannot carry detections")
        return self

    @property
    def ok(self) -> bool:
        return self.error_message is None


# overlay geometry


class OverlayStyle(BaseModel):
    box_color: Tuple[int, int, int] = (0, 255, 0)
    box_thickness: int = 2
    text_color: Tuple[int, int, int] = (255, 255, 255)
    label_bg_color: Tuple[int, int, int] = (0, 0, 0)
    label_bg_alpha: float = 0.6
    font_scale: float = 0.5
    font_thickness: int = 1
    padding: int = 4
    line_spacing: int = 4
    max_label_chars: int = 32


class PixelRect(BaseModel):
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height


class LabelBlock(BaseModel):
    rect: PixelRect
    lines: List[str]
    line_height: int
    origins: List[Tuple[int, int]]


class OverlayBox(BaseModel):
    index: int
    rect: PixelRect
    label: Optional[LabelBlock] = None


class RenderableOverlay(BaseModel):
    width: int
    height: int
    boxes: List[OverlayBox] = Field(default_factory=list)
