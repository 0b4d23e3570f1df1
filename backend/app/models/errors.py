"""
Error taxonomy shared by the relay and the streaming consumer.

Every error carries a machine-readable `kind` so callers can tell a
configuration problem (send the user to settings) from an upstream one
(report a transient API failure).
"""
from typing import Any, Dict, Optional


class RelayError(Exception):
    """Base error for the chat relay and its consumer."""

    kind = "InternalError"

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[str] = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "kind": self.kind}
        if self.details is not None:
            body["details"] = self.details
        return body


class MissingConfiguration(RelayError):
    """baseUrl, apiKey or modelName missing from a relay request."""

    kind = "MissingConfiguration"

    def __init__(self, message: str = "Missing required configuration: baseUrl, apiKey, or modelName") -> None:
        super().__init__(message, status_code=400)


class NotConfigured(RelayError):
    """The consumer was called without a usable LLM configuration."""

    kind = "NotConfigured"

    def __init__(self, message: str = "Configure the LLM API (base URL, API key, model name) in settings first") -> None:
        super().__init__(message, status_code=400)


class InvalidRequest(RelayError):
    kind = "InvalidRequest"

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        super().__init__(message, status_code=400, details=details)


class UpstreamError(RelayError):
    """Non-2xx from the LLM endpoint, or an explicit `error` in its body."""

    kind = "UpstreamError"

    def __init__(self, message: str, status_code: int = 502, details: Optional[str] = None) -> None:
        super().__init__(message, status_code=status_code, details=details)


class NetworkFailure(RelayError):
    kind = "NetworkFailure"

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        super().__init__(message, status_code=502, details=details)


class RequestTimeout(RelayError):
    kind = "Timeout"

    def __init__(self, message: str = "Request timed out") -> None:
        super().__init__(message, status_code=504)


class RequestCancelled(RelayError):
    kind = "Cancelled"

    def __init__(self, message: str = "Request cancelled") -> None:
        # 499: client closed request
        super().__init__(message, status_code=499)


ERROR_KINDS = {
    cls.kind: cls
    for cls in (
        RelayError,
        MissingConfiguration,
        NotConfigured,
        InvalidRequest,
        UpstreamError,
        NetworkFailure,
        RequestTimeout,
        RequestCancelled,
    )
}


def error_from_body(status_code: int, body: Any) -> RelayError:
    """Rebuild a RelayError from a relay error response body."""
    if not isinstance(body, dict):
        return UpstreamError(f"Relay returned {status_code}", status_code=status_code, details=str(body))

    message = body.get("error")
    if isinstance(message, dict):
        message = message.get("message") or str(message)
    message = str(message) if message else f"Relay returned {status_code}"
    details = body.get("details")
    details = None if details is None else str(details)

    cls = ERROR_KINDS.get(body.get("kind"), UpstreamError)
    if cls in (MissingConfiguration, NotConfigured, RequestTimeout, RequestCancelled):
        return cls(message)
    if cls is UpstreamError:
        return UpstreamError(message, status_code=status_code, details=details)
    return cls(message, details=details)
