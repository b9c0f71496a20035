"""
REST + WebSocket endpoints for the monitoring session.
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Response
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from liveness.config import Settings
from liveness.coordinator import SessionCoordinator, build_coordinator
from liveness.errors import LivenessError
from liveness.visual import face_status, status_label


router = APIRouter()
settings = Settings()
logger = logging.getLogger(__name__)

# built on first use so importing the app does not open devices or load models
coordinator: Optional[SessionCoordinator] = None


def get_coordinator() -> SessionCoordinator:
    global coordinator
    if coordinator is None:
        coordinator = build_coordinator(settings)
    return coordinator


class StartRequest(BaseModel):
    want_audio: bool = False
    want_face_monitoring: bool = True
    rate_hz: Optional[float] = Field(default=None, gt=0)


_STATUS_BY_KIND = {
    "already_active": 409,
    "not_active": 409,
    "cancelled": 409,
    "invalid_state": 409,
    "aborted": 409,
    "permission_denied": 403,
    "denied": 403,
    "unsupported": 501,
    "device_unavailable": 503,
    "transient": 503,
}


def _http_error(e: LivenessError) -> HTTPException:
    kind = e.kind.value if e.kind is not None else "error"
    return HTTPException(status_code=_STATUS_BY_KIND.get(kind, 500),
                         detail={"kind": kind, "message": e.message})


@router.post("/session/start")
def session_start(req: Optional[StartRequest] = None):
    """
    Start camera capture and face monitoring (called once the applicant consents).

    A device error leaves the session FAILED; the application may continue
    without monitoring.
    """
    req = req or StartRequest()
    logger.debug(f"[api] /session/start {req}")
    try:
        session = get_coordinator().request_start(
            want_audio=req.want_audio,
            want_face_monitoring=req.want_face_monitoring,
            rate_hz=req.rate_hz,
        )
    except LivenessError as e:
        logger.warning(f"[api] session start failed: {e.message}")
        raise _http_error(e)
    return {"status": "started", "session": session.model_dump(mode="json")}


@router.post("/session/stop")
def session_stop():
    stopped = get_coordinator().stop()
    return {"status": "stopped" if stopped else "not_running"}


@router.get("/session/status")
def session_status():
    snap = get_coordinator().snapshot()
    payload = snap.model_dump(mode="json")
    payload["face"]["face_count"] = snap.face.face_count
    payload["face"]["status"] = face_status(snap.face.face_count)
    payload["face"]["label"] = status_label(snap.face.face_count, snap.face.multiple_faces_flag)
    return payload


@router.post("/session/pip")
def session_pip():
    try:
        active = get_coordinator().toggle_pip()
    except LivenessError as e:
        raise _http_error(e)
    return {"active": active}


@router.get("/session/photo")
def session_photo():
    try:
        png = get_coordinator().capture_photo()
    except LivenessError as e:
        raise _http_error(e)
    if png is None:
        raise HTTPException(status_code=404, detail="No frame captured yet")
    return Response(content=png, media_type="image/png")


@router.post("/dictation/start")
def dictation_start():
    coord = get_coordinator()
    try:
        coord.start_dictation()
    except LivenessError as e:
        raise _http_error(e)
    return coord.speech_state().model_dump(mode="json")


@router.post("/dictation/stop")
def dictation_stop():
    coord = get_coordinator()
    coord.stop_dictation()
    return coord.speech_state().model_dump(mode="json")


@router.post("/dictation/reset")
def dictation_reset():
    coord = get_coordinator()
    coord.reset_transcript()
    return coord.speech_state().model_dump(mode="json")


@router.websocket("/session/events")
async def session_events(ws: WebSocket):
    """Stream every session event as JSON until the client disconnects."""
    await ws.accept()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    # events are published from sampler/engine threads
    unsubscribe = get_coordinator().subscribe(
        lambda ev: loop.call_soon_threadsafe(queue.put_nowait, ev))

    async def pump():
        while True:
            ev = await queue.get()
            await ws.send_text(ev.model_dump_json())

    await ws.send_json({"type": "subscribed"})
    sender = asyncio.create_task(pump())
    try:
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        logger.debug("[api] events client disconnected")
    finally:
        sender.cancel()
        unsubscribe()
