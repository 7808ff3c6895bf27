from typing import Optional

from pydantic import BaseModel, Field


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    message: str
    error: Optional[str] = None
    errors: Optional[dict[str, list[str]]] = None


class HealthStatus(BaseModel):
    status: str
    database: str
    details: dict[str, str] = Field(default_factory=dict)
