"""
Auth Server API Client.

Async HTTP client for the Thai Craft backend's ``/api/auth/*`` and
``/api/policies`` endpoints.

Every transport failure (DNS, refused connection, timeout) surfaces as
:class:`~thaicraft.errors.ConnectivityError`, and every unusable reply
(non-2xx status, body that is not a JSON object, body that does not fit
the expected shape) as :class:`~thaicraft.errors.ServerVerificationError`.
Callers never see raw ``httpx`` exceptions.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
from pydantic import BaseModel, ValidationError

from thaicraft.errors import ConnectivityError, ServerVerificationError
from thaicraft.logger import StructuredLogger
from thaicraft.models.auth_models import (
    RegisterRequest,
    RegisterResponse,
    SuccessResponse,
    ValidateResponse,
    VerifyRequest,
    VerifyResponse,
)


def _session_header(session_id: str) -> dict[str, str]:
    return {"Authorization": f"Session {session_id}"}


class AuthApiClient:
    """HTTP client for the auth server.

    Parameters
    ----------
    base_url:
        Server root, e.g. ``https://learn-thai-api.onrender.com``.
    logger:
        Structured logger instance.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional ``httpx`` transport; tests pass ``httpx.MockTransport``.
    """

    def __init__(
        self,
        base_url: str,
        logger: StructuredLogger,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._logger = logger
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # /api/auth
    # ------------------------------------------------------------------

    async def verify(self, request: VerifyRequest) -> VerifyResponse:
        """Submit the signed Sign-In payload for server-side verification.

        A 2xx reply is returned as-is, including ``success: false``.

        Raises
        ------
        ServerVerificationError
            Non-2xx reply; the message carries the server's text.
        ConnectivityError
            The server could not be reached.
        """
        response = await self._request(
            "POST",
            "/api/auth/verify",
            json=request.model_dump(mode="json", by_alias=True),
        )
        if not response.is_success:
            raise ServerVerificationError(
                f"Authentication verification failed: {response.text}",
                detail=response.text,
                status_code=response.status_code,
            )
        return self._parse(response, VerifyResponse)

    async def register_username(
        self,
        temp_token: str,
        request: RegisterRequest,
    ) -> RegisterResponse:
        """Claim a username for a freshly verified wallet.

        The server answers refusals (duplicate name, invalid characters)
        with a JSON body carrying ``error``; those are returned with
        ``success`` forced to ``False`` so the caller can show the text.
        """
        response = await self._request(
            "POST",
            "/api/auth/register-username",
            headers={"Authorization": f"Bearer {temp_token}"},
            json=request.model_dump(mode="json", by_alias=True),
        )
        result = self._parse(response, RegisterResponse)
        if not response.is_success:
            return result.model_copy(update={"success": False})
        return result

    async def validate_session(self, session_id: str) -> ValidateResponse:
        """Ask the server whether *session_id* is still live."""
        response = await self._request(
            "GET", "/api/auth/validate", headers=_session_header(session_id),
        )
        self._raise_for_status(response)
        return self._parse(response, ValidateResponse)

    async def extend_session(self, session_id: str) -> bool:
        """Push the server-side expiry of *session_id* forward."""
        response = await self._request(
            "POST", "/api/auth/extend-session", headers=_session_header(session_id),
        )
        if not response.is_success:
            return False
        return self._parse(response, SuccessResponse).success

    async def logout(self, session_id: str) -> bool:
        """Invalidate *session_id* on the server."""
        response = await self._request(
            "POST", "/api/auth/logout", headers=_session_header(session_id),
        )
        return response.is_success

    # ------------------------------------------------------------------
    # /api/policies
    # ------------------------------------------------------------------

    async def list_policies(self) -> dict[str, Any]:
        """Return the raw ``{success, data: [{name, version}]}`` body."""
        response = await self._request("GET", "/api/policies")
        self._raise_for_status(response)
        return self._json_object(response)

    async def get_policy(self, name: str) -> dict[str, Any]:
        """Return the raw ``{success, data: {...}}`` body for one policy."""
        response = await self._request("GET", f"/api/policies/{name}")
        self._raise_for_status(response)
        return self._json_object(response)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            self._logger.warning("%s %s timed out: %s", method, path, exc)
            raise ConnectivityError(f"Request to {path} timed out") from exc
        except httpx.HTTPError as exc:
            self._logger.warning("%s %s failed: %s", method, path, exc)
            raise ConnectivityError(f"Network request failed: {exc}") from exc

        self._logger.debug(
            "%s %s -> %d", method, path, response.status_code,
            extra={"event": "HTTP", "status_code": response.status_code},
        )
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if not response.is_success:
            raise ServerVerificationError(
                f"Auth server returned HTTP {response.status_code}",
                detail=response.text,
                status_code=response.status_code,
            )

    @staticmethod
    def _json_object(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise ServerVerificationError(
                "Auth server returned malformed JSON",
                detail=response.text,
                status_code=response.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise ServerVerificationError(
                "Auth server returned an unexpected response shape",
                detail=response.text,
                status_code=response.status_code,
            )
        return body

    def _parse(self, response: httpx.Response, model: type[BaseModel]) -> Any:
        body = self._json_object(response)
        try:
            return model.model_validate(body)
        except ValidationError as exc:
            raise ServerVerificationError(
                f"Unexpected {model.__name__} payload from auth server",
                detail=str(exc),
                status_code=response.status_code,
            ) from exc
