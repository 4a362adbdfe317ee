"""Pydantic schemas for API contracts."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class TranscribeResponse(BaseModel):
    transcript: str
    duration: float = 0.0


class HealthResponse(BaseModel):
    status: str
    model: str
    model_loaded: bool


class ErrorResponse(BaseModel):
    error: str
    message: str | None = None


class TranscriptionMessage(BaseModel):
    type: Literal["transcription"] = "transcription"
    text: str


class LiveErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    message: str
