"""One-shot file transcription endpoint."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from ..deps.engine import get_invoker
from ..schemas import TranscribeResponse
from ..services.inference import InferenceInvoker
from ..settings import APISettings, get_settings

LOGGER = logging.getLogger("livescribe.transcribe")

router = APIRouter(prefix="/api", tags=["transcribe"])


@router.post("/transcribe", response_model=TranscribeResponse)
async def transcribe_audio(
    audio: UploadFile | None = File(None),
    settings: APISettings = Depends(get_settings),
    invoker: InferenceInvoker = Depends(get_invoker),
):
    if audio is None:
        raise HTTPException(status_code=400, detail="No audio file provided")
    data = await audio.read()
    if not data:
        raise HTTPException(status_code=400, detail="No audio file provided")
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(status_code=413, detail="Audio file too large")

    LOGGER.info("Received transcription request: %s (%d bytes)", audio.filename, len(data))
    start = time.perf_counter()
    transcript = await invoker.transcribe_file(data)
    duration = time.perf_counter() - start
    LOGGER.info("Transcription completed in %.2fs", duration)
    return TranscribeResponse(transcript=transcript, duration=round(duration, 3))
