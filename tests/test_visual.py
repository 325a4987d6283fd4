import numpy as np
import pytest

from core.models import AnalysisResult, BoundingBox, Detection, OverlayStyle, PixelRect
from core.visual import (
    ResizeObserver,
    compose_label_lines,
    composite,
    denormalize_box,
    draw_blocking_message,
    draw_status,
    layout_label,
    layout_overlay,
    render_overlay,
    summary_lines,
)


def fixed_measure(text, style):
    # 7px per character, 10px ascent, 3px descent
    return len(text) * 7, 10, 3


def face(x, y, w, h, **text):
    fields = {"age_range_estimate": "20-25", "gender_estimate": "Female", "mood_estimate": "Happy"}
    fields.update(text)
    return Detection(bounding_box=BoundingBox(x=x, y=y, width=w, height=h), **fields)


def result_of(*dets, summary="Detected faces."):
    return AnalysisResult(detections=list(dets), summary_text=summary)


def test_denormalize_scenario_640x480():
    rect = denormalize_box(BoundingBox(x=0.1, y=0.1, width=0.3, height=0.3), (640, 480))
    assert rect == PixelRect(x=64, y=48, width=192, height=144)


@pytest.mark.parametrize("size", [(1, 1), (3, 7), (640, 480), (1919, 1081)])
@pytest.mark.parametrize("box", [
    (0.0, 0.0, 1.0, 1.0),
    (0.999, 0.999, 0.001, 0.001),
    (0.33, 0.67, 0.67, 0.33),
    (0.5, 0.0, 0.5, 1.0),
])
def test_denormalized_rect_stays_inside_canvas(size, box):
    rect = denormalize_box(BoundingBox(x=box[0], y=box[1], width=box[2], height=box[3]), size)
    if rect is None:
        return
    assert 0 <= rect.x and rect.right <= size[0]
    assert 0 <= rect.y and rect.bottom <= size[1]


def test_denormalize_clamps_and_skips_bad_boxes():
    rect = denormalize_box(BoundingBox(x=0.8, y=-0.2, width=0.5, height=0.5), (100, 100))
    assert rect == PixelRect(x=80, y=0, width=20, height=30)
    assert denormalize_box(BoundingBox(x=float("nan"), y=0, width=0.1, height=0.1), (100, 100)) is None
    assert denormalize_box(BoundingBox(x=0.1, y=0.1, width=0.0, height=0.1), (100, 100)) is None
    assert denormalize_box(BoundingBox(x=1.5, y=0.1, width=0.2, height=0.2), (100, 100)) is None


def test_label_lines_skip_empty_and_fold_to_ascii():
    det = Detection(age_range_estimate="30s", gender_estimate="", mood_estimate="Überrascht\nsehr")
    lines = compose_label_lines(det, max_chars=32)
    assert lines == ["Age: 30s", "Mood: ?berrascht sehr"]
    long = compose_label_lines(Detection(mood_estimate="x" * 100), max_chars=20)
    assert len(long[0]) == 20 and long[0].endswith("...")


def test_label_block_size_from_line_metrics():
    style = OverlayStyle(padding=4, line_spacing=4)
    block = layout_label(PixelRect(x=10, y=10, width=50, height=50), ["ab", "abcd"], (200, 200), style, fixed_measure)
    assert block.line_height == 17
    assert block.rect == PixelRect(x=10, y=10, width=4 * 7 + 8, height=2 * 17 + 8)
    assert block.origins == [(14, 24), (14, 41)]


def test_label_at_top_edge_stays_on_canvas():
    overlay = layout_overlay((320, 240), result_of(face(0.2, 0.0, 0.3, 0.3)), measure=fixed_measure)
    label = overlay.boxes[0].label
    assert label.rect.y >= 0


def test_label_at_bottom_edge_flips_above_box():
    # box touches the bottom: y + height == 1
    overlay = layout_overlay((320, 240), result_of(face(0.2, 0.9, 0.2, 0.1)), measure=fixed_measure)
    box = overlay.boxes[0]
    assert box.rect.bottom == 240
    assert box.label.rect.bottom <= 240
    assert box.label.rect.bottom <= box.rect.y  # flipped above the box


def test_label_pinned_to_bottom_when_no_room_above():
    # canvas barely taller than the label block; box sits low
    style = OverlayStyle(padding=4, line_spacing=4)
    block = layout_label(PixelRect(x=0, y=30, width=10, height=30), ["a", "b", "c"], (100, 60), style, fixed_measure)
    assert block.rect.bottom <= 60
    assert block.rect.y >= 0


def test_label_slides_left_at_right_edge():
    overlay = layout_overlay((200, 200), result_of(face(0.95, 0.2, 0.05, 0.2)), measure=fixed_measure)
    label = overlay.boxes[0].label
    assert label.rect.right <= 200
    assert label.rect.x >= 0


def test_detection_without_box_is_skipped_not_fatal():
    res = result_of(Detection(mood_estimate="Calm"), face(0.1, 0.1, 0.3, 0.3))
    overlay = layout_overlay((640, 480), res, measure=fixed_measure)
    assert [b.index for b in overlay.boxes] == [1]
    assert "#1: Calm (no box)" in summary_lines(res)


def test_empty_result_clears_canvas():
    canvas = render_overlay(None, (640, 480), result_of(face(0.1, 0.1, 0.3, 0.3)))
    assert canvas[..., 3].any()
    empty = AnalysisResult(detections=[], summary_text="No clearly analyzable faces were detected.")
    canvas = render_overlay(canvas, (640, 480), empty)
    assert canvas.shape == (480, 640, 4)
    assert not canvas.any()
    assert summary_lines(empty) == ["No clearly analyzable faces were detected."]


def test_render_scenario_strokes_box_edges():
    canvas = render_overlay(None, (640, 480), result_of(face(0.1, 0.1, 0.3, 0.3, age_range_estimate="",
                                                             gender_estimate="", mood_estimate="")))
    # no labels: only the stroked rectangle
    assert canvas[48 + 72, 64, 3] == 255
    assert canvas[48 + 143, 64 + 96, 3] == 255
    assert canvas[48 + 72, 64 + 96, 3] == 0  # interior untouched
    assert canvas[20, 20, 3] == 0


def test_render_is_idempotent():
    res = result_of(face(0.1, 0.1, 0.3, 0.3), face(0.6, 0.5, 0.3, 0.5))
    first = render_overlay(None, (320, 240), res).copy()
    again = render_overlay(first.copy(), (320, 240), res)
    assert np.array_equal(first, again)


def test_resize_reprojects_without_leftovers():
    res = result_of(face(0.1, 0.1, 0.3, 0.3))
    small = render_overlay(None, (320, 240), res)
    big = render_overlay(small, (640, 480), res)
    fresh = render_overlay(None, (640, 480), res)
    assert big.shape == (480, 640, 4)
    assert np.array_equal(big, fresh)
    rect = layout_overlay((640, 480), res).boxes[0].rect
    assert (rect.x, rect.y, rect.width, rect.height) == (64, 48, 192, 144)


def test_render_without_result_is_blank():
    canvas = render_overlay(None, (10, 10), None)
    assert canvas.shape == (10, 10, 4) and not canvas.any()


def test_composite_scales_frame_to_canvas():
    frame = np.full((48, 64, 3), 100, dtype=np.uint8)
    canvas = np.zeros((240, 320, 4), dtype=np.uint8)
    canvas[0:10, 0:10] = (0, 0, 255, 255)
    out = composite(frame, canvas)
    assert out.shape == (240, 320, 3)
    assert tuple(out[5, 5]) == (0, 0, 255)
    assert tuple(out[100, 100]) == (100, 100, 100)


def test_summary_lines_for_failure():
    failed = AnalysisResult(summary_text="Analysis could not be completed due to an error.",
                            error_message="AI analysis failed: timeout")
    assert summary_lines(failed) == ["Analysis Error: AI analysis failed: timeout"]
    assert summary_lines(None) == []


def test_status_and_blocking_message_draw():
    frame = np.zeros((100, 200, 3), dtype=np.uint8)
    draw_status(frame, ["ANALYZING FRAME..."], (0, 215, 255))
    assert frame.any()
    msg = draw_blocking_message((320, 180), "Camera Access Denied", "Please enable camera permissions.")
    assert msg.shape == (180, 320, 3)


def test_resize_observer_fires_only_on_change():
    sizes = iter([(640, 480), (640, 480), (800, 600)])
    seen = []
    obs = ResizeObserver(lambda: next(sizes), seen.append)
    assert obs.poll() is True
    assert obs.poll() is False
    assert obs.poll() is True
    assert seen == [(640, 480), (800, 600)]


def test_label_text_trimmed_to_narrow_canvas():
    style = OverlayStyle(padding=4, line_spacing=4)
    block = layout_label(PixelRect(x=0, y=0, width=60, height=60), ["Mood: Happy", "Age: 1"], (60, 200),
                         style, fixed_measure)
    assert block.lines == ["Mood...", "Age: 1"]
    assert block.rect.right <= 60
    assert all(fixed_measure(line, style)[0] <= block.rect.width - 8 for line in block.lines)
