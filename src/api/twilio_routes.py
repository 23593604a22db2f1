"""Twilio Voice integration.

This module provides:
- Voice webhook (TwiML) that connects an inbound call to a Media Stream.
- The Media Stream WebSocket endpoint that bridges the call to the realtime model.
"""

from __future__ import annotations

import logging
from typing import Any
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, HTTPException, Request, Response, WebSocket
from twilio.request_validator import RequestValidator

from api.dependencies import get_app_settings, get_registry
from bridge.registry import SessionRegistry
from config.settings import Settings

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["twilio"])

MEDIA_STREAM_PATH = "/media-stream"


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


def _twiml_connect_stream(*, stream_url: str) -> str:
    stream = escape(stream_url, {'"': "&quot;"})
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Connect>"
        f"<Stream url=\"{stream}\" />"
        "</Connect>"
        "</Response>"
    )


def _stream_url(request: Request, settings: Settings) -> str:
    if settings.ws_endpoint:
        return settings.ws_endpoint
    host = request.headers.get("host") or request.url.netloc
    return f"wss://{host}{MEDIA_STREAM_PATH}"


def _valid_twilio_signature(request: Request, form_data: dict[str, Any], auth_token: str) -> bool:
    signature = request.headers.get("X-Twilio-Signature", "")
    if not signature:
        return False
    validator = RequestValidator(auth_token)
    return validator.validate(str(request.url), form_data, signature)


@router.post("/incoming-call")
async def incoming_call(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> Response:
    """TwiML webhook that tells Twilio to open the media WebSocket."""

    form = await request.form()
    form_data = {key: str(value) for key, value in form.items()}

    if settings.twilio_auth_token and not _valid_twilio_signature(request, form_data, settings.twilio_auth_token):
        LOGGER.warning("Rejected incoming call webhook with invalid Twilio signature")
        raise HTTPException(status_code=403, detail="Invalid Twilio signature")

    stream_url = _stream_url(request, settings)
    LOGGER.info("Incoming call %s -> %s", form_data.get("CallSid") or "unknown", stream_url)
    return _twiml_response(_twiml_connect_stream(stream_url=stream_url))


@router.websocket(MEDIA_STREAM_PATH)
async def media_stream(
    websocket: WebSocket,
    registry: SessionRegistry = Depends(get_registry),
) -> None:
    await registry.serve(websocket)
