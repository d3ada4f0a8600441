from __future__ import annotations

from pydantic import BaseModel, Field


class CheckRequest(BaseModel):
    urls: list[str] | None = None


class UrlResult(BaseModel):
    url: str
    status: str
    ssl_status: str
    imageUrl: str | None = None
    error: str | None = None


class CheckResponse(BaseModel):
    message: str
    results: list[UrlResult] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error: str
