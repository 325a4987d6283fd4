"""Run the live camera preview with on-demand analysis.

Usage:
    uvicorn api.main:app --reload  # (separate, for the HTTP API)
    python scripts/live_overlay.py  # (to see the camera window)

Press 'c' or SPACE to analyze the current frame, 'q' to quit the window.
"""
import logging
from core.config import Settings
from core.live import run_live_overlay

if __name__ == '__main__':
    s = Settings()
    logging.basicConfig(level=s.log_level)
    run_live_overlay(s)
