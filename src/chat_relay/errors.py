"""Failure shapes for calls that leave the process.

Errors are classified once, where the HTTP call is made, and carried as a
single exception type so routes and clients never poke at library-specific
exception attributes.
"""

from enum import Enum

import httpx


class ErrorKind(str, Enum):
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    NETWORK = "network"
    UNKNOWN = "unknown"


class UpstreamError(Exception):
    def __init__(
        self,
        kind: ErrorKind,
        detail: str,
        status_code: int | None = None,
        service: str = "upstream",
    ) -> None:
        super().__init__(detail)
        self.kind = kind
        self.detail = detail
        self.status_code = status_code
        self.service = service

    def __repr__(self) -> str:
        return (
            f"UpstreamError(kind={self.kind.value!r}, status_code={self.status_code!r}, "
            f"service={self.service!r}, detail={self.detail!r})"
        )

    @property
    def http_status(self) -> int:
        """Status code to hand back to our own caller."""
        if self.kind in (ErrorKind.TIMEOUT, ErrorKind.NETWORK):
            return 503
        if self.kind == ErrorKind.HTTP_STATUS and self.status_code:
            return self.status_code
        return 500

    @classmethod
    def from_exception(cls, exc: Exception, service: str = "upstream") -> "UpstreamError":
        if isinstance(exc, UpstreamError):
            return exc
        if isinstance(exc, httpx.TimeoutException):
            return cls(ErrorKind.TIMEOUT, f"No response from {service}: timed out", service=service)
        if isinstance(exc, httpx.TransportError):
            return cls(ErrorKind.NETWORK, f"No response from {service}", service=service)
        if isinstance(exc, httpx.HTTPStatusError):
            return cls.from_response(exc.response, service)
        return cls(ErrorKind.UNKNOWN, str(exc) or f"Unknown error calling {service}", service=service)

    @classmethod
    def from_response(cls, response: httpx.Response, service: str = "upstream") -> "UpstreamError":
        detail = f"Error from {service}"
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("error") or body.get("detail")
            if isinstance(message, str) and message:
                detail = message
        return cls(ErrorKind.HTTP_STATUS, detail, status_code=response.status_code, service=service)
