from __future__ import annotations


class SimRunnerError(Exception):
    """Base class for sim-runner errors.

    Example:
        ```python
        raise SimRunnerError("something went wrong")
        ```
    """


class UnknownProgramError(SimRunnerError, ValueError):
    """Raised when a program id is not present in the registry.

    Example:
        ```python
        raise UnknownProgramError("fortran")
        ```
    """

    def __init__(self, program_id: str) -> None:
        """Store the unknown id and build the message.

        Example:
            ```python
            err = UnknownProgramError("fortran")
            ```
        """
        super().__init__(f"Unknown program: {program_id}")
        self.program_id = program_id


class RemoteUnavailableError(SimRunnerError):
    """Remote microservice could not be reached (connect error, timeout).

    Example:
        ```python
        raise RemoteUnavailableError("Connection refused")
        ```
    """


class RemoteError(SimRunnerError):
    """Remote microservice answered with a non-2xx status or a malformed body.

    Example:
        ```python
        raise RemoteError("Remote returned 502", status_code=502)
        ```
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Store the HTTP status alongside the message.

        Example:
            ```python
            err = RemoteError("bad gateway", status_code=502)
            ```
        """
        super().__init__(message)
        self.status_code = status_code
