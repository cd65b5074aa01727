"""HTTP client for the upstream credential-issuing service."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from keygate.adapters.issuer.base import AbstractCredentialIssuer, IssuedCredential
from keygate.core.errors import UpstreamIssuanceAppError

logger = logging.getLogger(__name__)


class HttpCredentialIssuer(AbstractCredentialIssuer):
    """Creates upstream users via ``POST {base_url}{users_path}``.

    The upstream answers with ``{"api_key": ..., "id": ...}``. Anything other
    than a 2xx JSON object carrying a non-empty ``api_key`` is a failure.
    """

    def __init__(
        self,
        base_url: str,
        users_path: str = "/v1/users",
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the issuer client.

        Args:
            base_url: Upstream base URL.
            users_path: Path of the user creation endpoint.
            timeout_seconds: Timeout for the whole request.
            transport: Optional httpx transport (tests use ``httpx.MockTransport``).
        """
        self.url = base_url.rstrip("/") + users_path
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def issue(self, email: str) -> IssuedCredential:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(self.url, json={"email": email})
        except httpx.HTTPError as exc:
            raise UpstreamIssuanceAppError(
                code="upstream_unreachable",
                message=f"Upstream issuer request failed: {type(exc).__name__}",
                details={"operation": "issue"},
            ) from exc

        if not response.is_success:
            raise UpstreamIssuanceAppError(
                code="upstream_rejected",
                message="Failed to generate key from upstream issuer",
                details={"upstream_status": response.status_code},
            )

        try:
            payload: Any = response.json()
        except ValueError as exc:
            raise UpstreamIssuanceAppError(
                code="upstream_invalid_response",
                message="Upstream issuer returned a non-JSON body",
                details={"upstream_status": response.status_code},
            ) from exc

        api_key = payload.get("api_key") if isinstance(payload, dict) else None
        if not isinstance(api_key, str) or not api_key:
            raise UpstreamIssuanceAppError(
                code="upstream_invalid_response",
                message="Upstream issuer response carries no api_key",
                details={"upstream_status": response.status_code},
            )

        subject_id = payload.get("id")
        return IssuedCredential(
            api_key=api_key,
            subject_id=str(subject_id) if subject_id is not None else None,
        )
