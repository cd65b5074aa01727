"""Pydantic schemas for the key issuance and verification endpoints."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class IssueKeyRequest(BaseModel):
    """Body of ``POST /keys``. Both fields are optional."""

    model_config = ConfigDict(extra="ignore")

    project: str | None = Field(
        default=None,
        description="Project the key is for (defaults to 'main').",
    )
    email: str | None = Field(
        default=None,
        description="Contact email registered with the key.",
    )


class IssueKeyResponse(BaseModel):
    """Successful issuance."""

    api_key: str = Field(..., description="The new API key. Shown only once.")
    rate_limit: int = Field(..., description="Requests allowed per minute.")
    expires_in: None = Field(default=None, description="Keys do not expire.")
    message: str = Field(..., description="Human-readable summary.")


class VerifyAllowedResponse(BaseModel):
    """The request was admitted."""

    allowed: Literal[True] = True
    remaining: int = Field(..., description="Requests left in the current minute.")
    limit: int = Field(..., description="Requests allowed per minute.")


class RateLimitExceededResponse(BaseModel):
    """The key has no headroom left in the current minute."""

    error: Literal["Rate limit exceeded"] = "Rate limit exceeded"
    limit: int
    remaining: int = 0
    reset: int = Field(..., description="Epoch milliseconds after which to retry.")


class ErrorResponse(BaseModel):
    """Uniform error body."""

    error: str
