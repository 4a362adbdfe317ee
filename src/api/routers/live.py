"""Live streaming transcription endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from ..deps.engine import get_ws_invoker
from ..metrics import LIVE_CONNECTIONS
from ..services.inference import InferenceInvoker
from ..services.live_session import ConnectionHandler
from ..services.transcoder import build_transcoder
from ..settings import APISettings, get_settings

LOGGER = logging.getLogger("livescribe.live")

router = APIRouter(prefix="/api", tags=["live"])


@router.websocket("/live")
async def live_transcription(
    websocket: WebSocket,
    settings: APISettings = Depends(get_settings),
    invoker: InferenceInvoker = Depends(get_ws_invoker),
):
    await websocket.accept()
    LIVE_CONNECTIONS.inc()
    LOGGER.info("New WebSocket connection established")
    handler = ConnectionHandler(
        websocket.send_json,
        invoker,
        lambda sink: build_transcoder(sink, settings.live_input_format, settings.live_sample_rate),
        silence_ms=settings.live_silence_ms,
        latency_ceiling_ms=settings.live_latency_ceiling_ms,
    )
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if message.get("bytes") is not None:
                await handler.on_audio(message["bytes"])
            elif message.get("text") is not None:
                await handler.on_control(message["text"])
    except WebSocketDisconnect:
        pass
    finally:
        await handler.close()
        LIVE_CONNECTIONS.dec()
        LOGGER.info("WebSocket connection closed")
