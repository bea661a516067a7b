from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    ok: bool = True


class DecodeResponse(BaseModel):
    decoded: str
    length: int = Field(ge=0)
