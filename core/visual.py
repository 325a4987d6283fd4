"""Overlay geometry, label layout and painting.

- layout_overlay: denormalize detections for a displayed size and place labels (pure)
- paint_overlay: clear a BGRA canvas and draw boxes + label blocks onto it
- render_overlay: resize/clear/paint in one call; the canvas is the only state
- composite: blend the overlay canvas over a frame resized to the same size

Text metrics go through an injectable `measure` callable so geometry can be
tested without depending on font rasterization.
"""
from __future__ import annotations
import logging
import math
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np

from core.config import Settings
from core.models import (
    AnalysisResult,
    BoundingBox,
    Detection,
    LabelBlock,
    OverlayBox,
    OverlayStyle,
    PixelRect,
    RenderableOverlay,
)

logger = logging.getLogger(__name__)

FONT = cv2.FONT_HERSHEY_SIMPLEX

Size = Tuple[int, int]
# (width, ascent, descent) in pixels
MeasureFn = Callable[[str, OverlayStyle], Tuple[int, int, int]]


def style_from_settings(settings: Settings) -> OverlayStyle:
    return OverlayStyle(
        box_thickness=settings.OVERLAY_BOX_THICKNESS,
        label_bg_alpha=settings.OVERLAY_LABEL_ALPHA,
        font_scale=settings.OVERLAY_FONT_SCALE,
        padding=settings.OVERLAY_PADDING,
        line_spacing=settings.OVERLAY_LINE_SPACING,
    )


def measure_text(text: str, style: OverlayStyle) -> Tuple[int, int, int]:
    (w, h), baseline = cv2.getTextSize(text, FONT, style.font_scale, style.font_thickness)
    return int(w), int(h), int(baseline)


def _clamp01(v: float) -> float:
    return max(0.0, min(1.0, v))


def denormalize_box(box: BoundingBox, size: Size) -> Optional[PixelRect]:
    """Project a normalized box onto a canvas, clamped to the canvas bounds.

    Returns None for boxes with no visible area (non-finite values, zero or
    negative extent, or entirely outside the unit square).
    """
    w, h = size
    vals = (box.x, box.y, box.width, box.height)
    if not all(math.isfinite(v) for v in vals) or box.width <= 0 or box.height <= 0:
        return None

    x0, y0 = _clamp01(box.x), _clamp01(box.y)
    x1, y1 = _clamp01(box.x + box.width), _clamp01(box.y + box.height)
    px, py = int(round(x0 * w)), int(round(y0 * h))
    pw = min(int(round((x1 - x0) * w)), w - px)
    ph = min(int(round((y1 - y0) * h)), h - py)
    if pw <= 0 or ph <= 0:
        return None
    return PixelRect(x=px, y=py, width=pw, height=ph)


def _ascii(text: str) -> str:
    # Hershey fonts only cover ASCII
    return " ".join(text.split()).encode("ascii", "replace").decode("ascii")


def compose_label_lines(det: Detection, max_chars: int = 32) -> List[str]:
    fields = (
        ("Age", det.age_range_estimate),
        ("Gender", det.gender_estimate),
        ("Mood", det.mood_estimate),
    )
    lines = []
    for name, value in fields:
        value = _ascii(value or "")
        if not value:
            continue
        line = f"{name}: {value}"
        if len(line) > max_chars:
            line = line[:max(1, max_chars - 3)].rstrip() + "..."
        lines.append(line)
    return lines


def _fit_line(line: str, avail: int, style: OverlayStyle, measure: MeasureFn) -> str:
    """Shorten `line` with a trailing "..." until its measured width fits `avail`."""
    if measure(line, style)[0] <= avail:
        return line
    cut = line
    while len(cut) > 1:
        cut = cut[:-1]
        text = cut.rstrip() + "..."
        if measure(text, style)[0] <= avail:
            return text
    return cut


def layout_label(rect: PixelRect,
                 lines: List[str],
                 size: Size,
                 style: OverlayStyle,
                 measure: Optional[MeasureFn] = None) -> Optional[LabelBlock]:
    """Place a label block for `rect` so it stays fully on the canvas.

    Default anchor is the box's top-left corner, flowing down. If that runs past
    the bottom edge the block flips above the box when there's room, otherwise
    it is pinned to the bottom edge. Horizontally it slides left to fit.
    """
    if not lines:
        return None
    measure = measure or measure_text
    cw, ch = size
    pad = style.padding

    metrics = [measure(line, style) for line in lines]
    ascent = max(m[1] for m in metrics)
    descent = max(m[2] for m in metrics)
    line_h = ascent + descent + style.line_spacing

    max_lines = max(1, (ch - 2 * pad) // line_h) if line_h > 0 else len(lines)
    if len(lines) > max_lines:
        lines, metrics = lines[:max_lines], metrics[:max_lines]

    avail = cw - 2 * pad
    if any(m[0] > avail for m in metrics):
        lines = [_fit_line(line, avail, style, measure) for line in lines]
        metrics = [measure(line, style) for line in lines]

    block_w = min(max(m[0] for m in metrics) + 2 * pad, cw)
    block_h = min(len(lines) * line_h + 2 * pad, ch)

    left = max(0, min(rect.x, cw - block_w))
    top = rect.y
    if top + block_h > ch:
        above = rect.y - block_h
        top = above if above >= 0 else ch - block_h
    top = max(0, top)

    origins = [(left + pad, top + pad + i * line_h + ascent) for i in range(len(lines))]
    return LabelBlock(
        rect=PixelRect(x=left, y=top, width=block_w, height=block_h),
        lines=lines,
        line_height=line_h,
        origins=origins,
    )


def layout_overlay(display_size: Size,
                   result: Optional[AnalysisResult],
                   style: Optional[OverlayStyle] = None,
                   measure: Optional[MeasureFn] = None) -> RenderableOverlay:
    """Denormalize every boxable detection for the displayed size and lay out its label."""
    style = style or OverlayStyle()
    w, h = max(0, int(display_size[0])), max(0, int(display_size[1]))
    if w < 1 or h < 1 or result is None:
        return RenderableOverlay(width=w, height=h)

    boxes: List[OverlayBox] = []
    for i, det in enumerate(result.detections):
        if det.bounding_box is None:
            continue
        try:
            rect = denormalize_box(det.bounding_box, (w, h))
            if rect is None:
                logger.debug(f"[overlay] detection #{i} has no visible area, skipped")
                continue
            label = layout_label(rect, compose_label_lines(det, style.max_label_chars), (w, h), style, measure)
        except (TypeError, ValueError) as e:
            logger.warning(f"[overlay] detection #{i} could not be laid out: {e}")
            continue
        boxes.append(OverlayBox(index=i, rect=rect, label=label))
    return RenderableOverlay(width=w, height=h, boxes=boxes)


def paint_overlay(canvas: np.ndarray, overlay: RenderableOverlay, style: Optional[OverlayStyle] = None) -> np.ndarray:
    """Clear `canvas` (BGRA) and draw the overlay onto it in place.

    Args:
        canvas: HxWx4 uint8 array matching overlay.width/height
        overlay: geometry from layout_overlay
        style: colours, stroke and font settings

    Returns:
        The same canvas, for chaining
    """
    style = style or OverlayStyle()
    canvas[...] = 0

    box_color = (*style.box_color, 255)
    text_color = (*style.text_color, 255)
    bg = (*style.label_bg_color, int(round(style.label_bg_alpha * 255)))

    for ob in overlay.boxes:
        r = ob.rect
        cv2.rectangle(canvas, (r.x, r.y), (r.right - 1, r.bottom - 1), box_color, style.box_thickness)
        if ob.label is None:
            continue
        lr = ob.label.rect
        canvas[lr.y:lr.bottom, lr.x:lr.right] = bg
        for line, origin in zip(ob.label.lines, ob.label.origins):
            cv2.putText(canvas, line, origin, FONT, style.font_scale, text_color,
                        style.font_thickness, cv2.LINE_AA)
    return canvas


def render_overlay(canvas: Optional[np.ndarray],
                   display_size: Size,
                   result: Optional[AnalysisResult],
                   style: Optional[OverlayStyle] = None,
                   measure: Optional[MeasureFn] = None) -> np.ndarray:
    """Resize (if needed), clear and repaint the overlay canvas for `display_size`."""
    w, h = max(0, int(display_size[0])), max(0, int(display_size[1]))
    if canvas is None or canvas.shape != (h, w, 4):
        canvas = np.zeros((h, w, 4), dtype=np.uint8)
    overlay = layout_overlay((w, h), result, style, measure)
    return paint_overlay(canvas, overlay, style)


def composite(frame: np.ndarray, canvas: np.ndarray) -> np.ndarray:
    """Scale `frame` to the canvas size and alpha-blend the overlay on top."""
    h, w = canvas.shape[:2]
    if w == 0 or h == 0:
        return frame.copy()
    base = frame
    if base.ndim == 2:
        base = cv2.cvtColor(base, cv2.COLOR_GRAY2BGR)
    if base.shape[:2] != (h, w):
        base = cv2.resize(base, (w, h), interpolation=cv2.INTER_LINEAR)
    alpha = canvas[..., 3:4].astype(np.float32) / 255.0
    out = base[..., :3].astype(np.float32) * (1.0 - alpha) + canvas[..., :3].astype(np.float32) * alpha
    return np.clip(out, 0, 255).astype(np.uint8)


def summary_lines(result: Optional[AnalysisResult]) -> List[str]:
    """Text rendition of a result, including detections that have no box."""
    if result is None:
        return []
    if not result.ok:
        return [f"Analysis Error: {result.error_message}"]
    lines = [result.summary_text] if result.summary_text else []
    for i, det in enumerate(result.detections, start=1):
        parts = [p for p in (det.age_range_estimate, det.gender_estimate,
                             det.mood_estimate, det.behavior_estimate) if p]
        suffix = "" if det.bounding_box is not None else " (no box)"
        lines.append(f"#{i}: {', '.join(parts) or 'no details'}{suffix}")
    return lines


def draw_status(frame: np.ndarray, lines: List[str],
                color: Tuple[int, int, int] = (255, 255, 255)) -> np.ndarray:
    """Stack short text lines in the top-left corner of a BGR frame (in place)."""
    y = 30
    for line in lines:
        text = _ascii(line)
        if not text:
            continue
        cv2.putText(frame, text, (10, y), FONT, 0.6, (0, 0, 0), 3, cv2.LINE_AA)
        cv2.putText(frame, text, (10, y), FONT, 0.6, color, 1, cv2.LINE_AA)
        y += 24
    return frame


def draw_blocking_message(size: Size, title: str, detail: str) -> np.ndarray:
    """Full-surface message shown when the camera can't be used at all."""
    w, h = max(1, int(size[0])), max(1, int(size[1]))
    out = np.full((h, w, 3), 32, dtype=np.uint8)
    for i, (text, scale, color) in enumerate(((title, 0.9, (80, 80, 255)), (detail, 0.5, (230, 230, 230)))):
        text = _ascii(text)
        (tw, th), _ = cv2.getTextSize(text, FONT, scale, 1)
        x = max(5, (w - tw) // 2)
        y = h // 2 + (i * 2 - 1) * (th + 6)
        cv2.putText(out, text, (x, y), FONT, scale, color, 1, cv2.LINE_AA)
    return out


class ResizeObserver:
    """Fires `on_resize(size)` whenever `measure()` reports a new displayed size."""
    def __init__(self, measure: Callable[[], Size], on_resize: Callable[[Size], None]):
        self._measure = measure
        self._on_resize = on_resize
        self.size: Optional[Size] = None

    def poll(self) -> bool:
        size = tuple(int(v) for v in self._measure())
        if size == self.size:
            return False
        self.size = size
        self._on_resize(size)
        return True
