"""
Client for the external frame analysis service.

Every failure mode (transport error, non-2xx status, malformed body, an error
reported by the service) is folded into an AnalysisResult carrying
error_message, so callers only ever branch on `result.ok`.
"""
from __future__ import annotations
import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from core.config import Settings
from core.models import AnalysisResult, CapturedFrame, Detection

logger = logging.getLogger(__name__)

FAILURE_SUMMARY = "Analysis could not be completed due to an error."
NO_OUTPUT_SUMMARY = "The AI could not provide an analysis for this frame."
API_KEY_HINT = "Invalid or missing analysis API key. Please check the ANALYSIS_API_KEY configuration."


def failure_result(message: str, summary: str = FAILURE_SUMMARY) -> AnalysisResult:
    return AnalysisResult(detections=[], summary_text=summary or FAILURE_SUMMARY,
                          error_message=message or "Unknown analysis error.")


def parse_analysis_payload(body: Any) -> AnalysisResult:
    """Map a decoded response body to an AnalysisResult.

    Accepts both the current field names (detections / summaryText /
    errorMessage) and the older ones (faces / detectionSummary / error).
    A missing or non-list detections value means "nothing detected", not failure.
    """
    if not isinstance(body, dict):
        return failure_result("Analysis service returned no output.", NO_OUTPUT_SUMMARY)

    summary = body.get("summaryText", body.get("detectionSummary")) or ""
    error = body.get("errorMessage", body.get("error"))
    if error is not None and str(error).strip():
        return failure_result(str(error).strip(), str(summary))

    raw = body.get("detections", body.get("faces"))
    if not isinstance(raw, list):
        if raw is not None:
            logger.warning(f"[analysis] detections is {type(raw).__name__}, treating as empty")
        raw = []

    detections = []
    for i, item in enumerate(raw):
        try:
            detections.append(Detection.model_validate(item))
        except ValidationError as e:
            logger.warning(f"[analysis] skipping malformed detection #{i}: {e.error_count()} error(s)")
    return AnalysisResult(detections=detections, summary_text=str(summary))


class AnalysisClient:
    """Posts one encoded frame to ANALYSIS_ENDPOINT and returns a normalized result."""
    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.s = settings
        self._client = client or httpx.AsyncClient(timeout=settings.ANALYSIS_TIMEOUT)

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.s.ANALYSIS_API_KEY:
            headers["Authorization"] = f"Bearer {self.s.ANALYSIS_API_KEY}"
        return headers

    async def analyze(self, frame: CapturedFrame) -> AnalysisResult:
        endpoint = (self.s.ANALYSIS_ENDPOINT or "").strip()
        if not endpoint:
            return failure_result("Analysis endpoint is not configured.")

        logger.debug(f"[analysis] POST {endpoint} frame={frame.width}x{frame.height} bytes={len(frame.payload)}")
        try:
            resp = await self._client.post(
                endpoint,
                json={"imageDataUri": frame.data_uri},
                headers=self._headers(),
            )
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning(f"[analysis] service responded with HTTP {status}")
            if status in (401, 403):
                return failure_result(f"AI analysis failed: {API_KEY_HINT} (HTTP {status})")
            return failure_result(f"AI analysis failed: service responded with HTTP {status}")
        except httpx.HTTPError as e:
            logger.warning(f"[analysis] transport error: {e!r}")
            return failure_result(f"AI analysis failed: {str(e) or type(e).__name__}")
        except ValueError:
            logger.warning("[analysis] response body is not valid JSON")
            return failure_result("AI analysis failed: malformed response body.", NO_OUTPUT_SUMMARY)

        result = parse_analysis_payload(body)
        if result.ok:
            logger.debug(f"[analysis] {len(result.detections)} detection(s): {result.summary_text}")
        return result

    async def aclose(self) -> None:
        await self._client.aclose()


class RequestTracker:
    """Monotonic request ids; only the most recently issued request may apply its result."""
    def __init__(self):
        self._latest = 0
        self._latest_done = True

    @property
    def latest(self) -> int:
        return self._latest

    @property
    def busy(self) -> bool:
        return not self._latest_done

    def issue(self) -> int:
        self._latest += 1
        self._latest_done = False
        return self._latest

    def is_current(self, request_id: int) -> bool:
        return request_id == self._latest

    def complete(self, request_id: int) -> bool:
        """Mark a request finished; True if its result should be applied."""
        if request_id != self._latest:
            logger.debug(f"[analysis] dropping stale response id={request_id} latest={self._latest}")
            return False
        self._latest_done = True
        return True
