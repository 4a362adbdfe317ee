"""Dependencies resolving the app-owned inference components."""

from __future__ import annotations

from fastapi import Request, WebSocket

from ..services.inference import InferenceInvoker


def get_invoker(request: Request) -> InferenceInvoker:
    return request.app.state.invoker


def get_ws_invoker(websocket: WebSocket) -> InferenceInvoker:
    return websocket.app.state.invoker
