
"""Run a live monitoring session with the preview window.

Usage:
    uvicorn liveness_api.main:app --reload  # (separate, for API)
    python scripts/live_monitor.py          # (to watch the camera locally)

Press Ctrl-C to stop.
"""
import logging
import time

from liveness.config import Settings
from liveness.coordinator import build_coordinator
from liveness.errors import AcquireError, PiPError

logger = logging.getLogger("live_monitor")


def _print_event(ev):
    if ev.type == "face_observation":
        logger.debug(f"faces={ev.face_count}")
    else:
        logger.info(ev.model_dump_json())


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    s = Settings()
    coord = build_coordinator(s)
    coord.subscribe(_print_event)
    try:
        coord.request_start(want_audio=False, want_face_monitoring=True)
    except AcquireError as e:
        logger.error(f"Camera unavailable ({e.kind.value}): {e.message}")
        raise SystemExit(1)
    try:
        coord.toggle_pip()
    except PiPError as e:
        logger.warning(f"Preview unavailable: {e.message}")
    try:
        while True:
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        coord.stop()
