from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from .types import Backend, ErrorKind, ExecutionResult

CODE_REQUIRED = "Code is required"


def result_to_wire(result: ExecutionResult) -> dict[str, Any]:
    """Serialize a result into the `/execute` response body.

    Example:
        ```python
        body = result_to_wire(ExecutionResult(success=True, output_file_path=Path("/o/a.mp4"), output_url="/outputs/simulations/a.mp4"))
        ```
    """
    if result.success:
        return {
            "success": True,
            "outputFile": result.output_file,
            "outputPath": str(result.output_file_path) if result.output_file_path else None,
            "url": result.output_url,
            "stdout": result.stdout,
            "exitCode": result.exit_code,
        }
    body: dict[str, Any] = {
        "success": False,
        "error": result.error or "Execution failed",
        "stdout": result.stdout,
        "stderr": result.stderr,
    }
    if result.error_kind is not None:
        body["errorKind"] = result.error_kind.value
    if result.exit_code is not None:
        body["exitCode"] = result.exit_code
    return body


def _error_kind(value: Any) -> ErrorKind:
    """Parse an `errorKind` field, defaulting to `NO_ARTIFACT` for older services.

    Example:
        ```python
        kind = _error_kind("execution_timeout")
        ```
    """
    try:
        return ErrorKind(value)
    except ValueError:
        return ErrorKind.NO_ARTIFACT


def result_from_wire(body: Mapping[str, Any]) -> ExecutionResult:
    """Deserialize an `/execute` response body into a remote result.

    Example:
        ```python
        result = result_from_wire({"success": False, "error": "Python execution timeout"})
        ```
    """
    if "success" not in body:
        raise ValueError("Response body has no 'success' field")
    exit_code = body.get("exitCode")
    exit_code = int(exit_code) if exit_code is not None else None
    if bool(body["success"]):
        output_path = body.get("outputPath") or body.get("outputFile")
        return ExecutionResult(
            success=True,
            output_file_path=Path(output_path) if output_path else None,
            output_url=body.get("url"),
            stdout=str(body.get("stdout") or ""),
            stderr=str(body.get("stderr") or ""),
            exit_code=exit_code,
            backend=Backend.REMOTE,
        )
    return ExecutionResult.failure(
        _error_kind(body.get("errorKind")),
        str(body.get("error") or "Remote execution failed"),
        stdout=str(body.get("stdout") or ""),
        stderr=str(body.get("stderr") or ""),
        exit_code=exit_code,
        backend=Backend.REMOTE,
    )
