"""Backend readiness endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..deps.engine import get_invoker
from ..schemas import HealthResponse
from ..services.inference import InferenceInvoker

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(invoker: InferenceInvoker = Depends(get_invoker)):
    loaded = invoker.is_ready
    body = HealthResponse(
        status="ok" if loaded else "initializing",
        model=invoker.model_name,
        model_loaded=loaded,
    )
    return JSONResponse(status_code=200 if loaded else 503, content=body.model_dump())
