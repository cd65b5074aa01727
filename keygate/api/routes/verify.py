"""Key verification endpoint."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Response
from fastapi.responses import JSONResponse

from keygate.api.deps import get_admission_controller
from keygate.core.errors import AppError, AuthenticationAppError, InternalAppError
from keygate.schemas.keys import ErrorResponse, RateLimitExceededResponse, VerifyAllowedResponse
from keygate.services.admission import AdmissionController
from keygate.services.authenticator import MISSING_KEY_MESSAGE

router = APIRouter(tags=["Verification"])


@router.options("/verify", include_in_schema=False)
async def verify_preflight() -> Response:
    return Response(status_code=200)


@router.post(
    "/verify",
    response_model=VerifyAllowedResponse,
    responses={
        401: {"model": ErrorResponse},
        429: {"model": RateLimitExceededResponse},
        500: {"model": ErrorResponse},
    },
)
async def verify_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
    admission: AdmissionController = Depends(get_admission_controller),
) -> VerifyAllowedResponse | JSONResponse:
    """Authenticate the X-API-Key header and consume one request of its budget.

    Returns:
        200 with the remaining budget, or 429 when the minute bucket is full.

    Raises:
        AuthenticationAppError: 401 for missing, unknown or inactive keys.
        InternalAppError: 500 for anything unexpected.
    """
    if not x_api_key:
        raise AuthenticationAppError(code="missing_api_key", message=MISSING_KEY_MESSAGE)

    try:
        decision = await admission.admit(x_api_key)
    except AppError:
        raise
    except Exception as exc:
        raise InternalAppError(
            code="verify_failed",
            message=f"Key verification failed: {type(exc).__name__}",
        ) from exc

    if not decision.allowed:
        body = RateLimitExceededResponse(
            limit=decision.limit,
            remaining=0,
            reset=decision.reset_ms or 0,
        )
        return JSONResponse(status_code=429, content=body.model_dump())

    return VerifyAllowedResponse(remaining=decision.remaining, limit=decision.limit)
