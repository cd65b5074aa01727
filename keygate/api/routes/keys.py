"""Key issuance endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Request, Response

from keygate.api.deps import get_key_issuer
from keygate.core.errors import AppError, IssuanceAppError
from keygate.schemas.keys import ErrorResponse, IssueKeyRequest, IssueKeyResponse
from keygate.services.key_issuer import KeyIssuer

router = APIRouter(tags=["Keys"])


def client_ip(request: Request) -> str | None:
    """Caller address, preferring the proxy-supplied X-Forwarded-For header."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded
    return request.client.host if request.client else None


@router.options("/keys", include_in_schema=False)
async def keys_preflight() -> Response:
    return Response(status_code=200)


@router.post(
    "/keys",
    response_model=IssueKeyResponse,
    responses={500: {"model": ErrorResponse}},
)
async def issue_key(
    request: Request,
    body: IssueKeyRequest | None = Body(default=None),
    key_issuer: KeyIssuer = Depends(get_key_issuer),
) -> IssueKeyResponse:
    """Issue a new API key.

    The key is minted upstream, stored with the default rate limit and
    announced through the notification queue.

    Raises:
        IssuanceAppError: For any failure; the client only ever sees
            ``{"error": "Failed to generate key"}``.
    """
    payload = body or IssueKeyRequest()

    try:
        record = await key_issuer.issue(
            project=payload.project,
            email=payload.email,
            ip=client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
    except AppError:
        raise
    except Exception as exc:
        raise IssuanceAppError(
            code="issue_unexpected_error",
            message=f"Unexpected error during key issuance: {type(exc).__name__}",
        ) from exc

    return IssueKeyResponse(
        api_key=record.key,
        rate_limit=record.rate_limit,
        expires_in=None,
        message=f"Key generated. Rate limit: {record.rate_limit} requests/minute",
    )
