# alarmserver/routers/events.py
"""
Camera alarm webhook.
Cameras are configured with this server as their HTTP alarm host and may
post to any path, so the route is a catch-all.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from alarmserver.exceptions import DecodeError
from alarmserver.services.event_parser import decode_request
from alarmserver.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


@router.api_route("/{path:path}", methods=ALL_METHODS, summary="Camera webhook, receives all alarms")
async def receive_camera_event(path: str, request: Request):
    """
    Only POST is processed. Malformed or unsupported payloads are still
    answered with 200. Cameras retry on non-200.
    """
    if request.method != "POST":
        logger.warning(f"Rejected {request.method} /{path} from {request.client.host if request.client else '?'}")
        return JSONResponse(status_code=400, content={"status": "error", "detail": "only POST is accepted"})

    raw_body = await request.body()
    logger.debug(f"Alarm on /{path} | {len(raw_body)} bytes | {request.headers.get('content-type', '')}")

    try:
        decoded = decode_request(request.headers, raw_body)
    except DecodeError as e:
        logger.error(f"Could not decode alarm request: {e}")
        return {"status": "ignored", "reason": str(e)}

    event = decoded.event
    logger.info(
        f"Alarm: device={event.device_id} type={event.event_type} channel={event.channel_name} "
        f"target={event.detection_target} images={len(decoded.images)}"
    )

    pipeline = request.app.state.pipeline
    accepted = await pipeline.process(decoded)
    return {"status": "ok" if accepted else "error", "state": event.state_key}
