from __future__ import annotations

from fastapi import status


class RouterError(Exception):
    """Base for errors that map onto a caller-visible JSON error response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_content(self) -> dict[str, str]:
        return {"error": self.message}


class ConfigurationError(RouterError):
    """Raised when startup configuration cannot be used (e.g. a non-numeric PORT)."""


class LocalRequestError(RouterError):
    """Raised when the upstream request cannot be built locally."""


class UpstreamUnavailableError(RouterError):
    """No response was received from the backend."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, *, service_name: str, timed_out: bool) -> None:
        super().__init__(
            message,
            status_code=(
                status.HTTP_504_GATEWAY_TIMEOUT
                if timed_out
                else status.HTTP_502_BAD_GATEWAY
            ),
        )
        self.service_name = service_name
        self.timed_out = timed_out


class UpstreamErrorStatus(RouterError):
    """The backend answered with a non-success status before streaming began."""

    def __init__(
        self,
        message: str,
        *,
        service_name: str,
        status_code: int,
        body: dict | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.service_name = service_name
        self.body = body

    def to_content(self) -> dict:
        if self.body is not None:
            return self.body
        return super().to_content()


class StreamInterruptedError(Exception):
    """The upstream stream failed after the response status was already sent.

    Not a ``RouterError``: nothing can be reported to the caller at this point,
    so the server terminates the connection instead.
    """

    def __init__(self, message: str, *, service_name: str) -> None:
        super().__init__(message)
        self.message = message
        self.service_name = service_name
