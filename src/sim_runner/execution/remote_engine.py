from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from ..config import RunnerSettings
from ..errors import RemoteError, RemoteUnavailableError
from .types import ExecutionRequest, ExecutionResult
from .wire import result_from_wire

logger = logging.getLogger(__name__)

HEALTH_TIMEOUT_SECONDS = 5.0


class RemoteEngine:
    """Delegate runs to per-program HTTP microservices.

    Transport failures raise `RemoteUnavailableError`; non-2xx answers and
    malformed bodies raise `RemoteError`. A `success: false` body is a normal
    result and is returned.

    Example:
        ```python
        engine = RemoteEngine(settings=RunnerSettings(remote_endpoints={"python": "http://sim-py:8001"}))
        ```
    """

    def __init__(
        self,
        *,
        settings: RunnerSettings | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Example:
            ```python
            engine = RemoteEngine(settings=settings, transport=httpx.MockTransport(handler))
            ```
        """
        self._settings = settings or RunnerSettings()
        self._transport = transport

    def supports(self, program_id: str) -> bool:
        """Whether a remote endpoint is configured for a program.

        Example:
            ```python
            if engine.supports("matlab"): ...
            ```
        """
        return self._settings.endpoint_for(program_id) is not None

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """POST the request to the program's `/execute` endpoint.

        Example:
            ```python
            result = engine.execute(ExecutionRequest.create("python", code, output_dir="/tmp/out", timeout_seconds=300))
            ```
        """
        endpoint = self._require_endpoint(request.program_id)
        timeout = self._settings.client_timeout_for(request.timeout_seconds)
        payload = {
            "code": request.source_code,
            "options": request.options,
            "timeoutSeconds": request.timeout_seconds,
        }
        logger.info("Executing %s via %s", request.program_id, endpoint)
        body = self._request("POST", f"{endpoint}/execute", timeout=timeout, json=payload)
        try:
            return result_from_wire(body)
        except (TypeError, ValueError) as exc:
            raise RemoteError(f"Malformed response from {endpoint}: {exc}") from exc

    def health(self, program_id: str) -> dict[str, Any]:
        """Return the `/health` body of a program's service.

        Example:
            ```python
            status = engine.health("python")["status"]
            ```
        """
        endpoint = self._require_endpoint(program_id)
        return self._request("GET", f"{endpoint}/health", timeout=HEALTH_TIMEOUT_SECONDS)

    def _require_endpoint(self, program_id: str) -> str:
        """Return the endpoint or raise `RemoteUnavailableError`.

        Example:
            ```python
            url = engine._require_endpoint("python")
            ```
        """
        endpoint = self._settings.endpoint_for(program_id)
        if endpoint is None:
            raise RemoteUnavailableError(f"No remote endpoint configured for {program_id}")
        return endpoint

    def _request(
        self,
        method: str,
        url: str,
        *,
        timeout: float,
        json: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send one HTTP request and return its JSON object body.

        Example:
            ```python
            body = engine._request("GET", "http://sim-py:8001/health", timeout=5)
            ```
        """
        try:
            with httpx.Client(
                timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
                transport=self._transport,
            ) as client:
                response = client.request(method, url, json=json)
        except httpx.TimeoutException as exc:
            raise RemoteUnavailableError(f"Timed out calling {url}") from exc
        except httpx.TransportError as exc:
            raise RemoteUnavailableError(f"Could not reach {url}: {exc}") from exc

        if not response.is_success:
            raise RemoteError(
                f"Remote returned {response.status_code} for {url}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise RemoteError(f"Remote returned invalid JSON for {url}") from exc
        if not isinstance(body, dict):
            raise RemoteError(f"Remote returned a non-object body for {url}")
        return body
