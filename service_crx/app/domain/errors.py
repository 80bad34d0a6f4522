"""
Error taxonomy for the extension fetch proxy.

Every failure maps onto one of the shared error families so the base
service renders it with a stable ``code`` and HTTP status.
"""

from typing import Any, Dict, Optional

from shared.errors import (
    ExternalServiceError,
    PayloadTooLargeError,
    RateLimitError,
    ValidationError,
)

UPSTREAM_SERVICE = "update_service"


class InvalidIdentifier(ValidationError):
    """Caller supplied something that is not a 32-letter extension id."""

    def __init__(self, value: str):
        super().__init__(
            "Invalid extension ID",
            details={"length": len(value)},
            code="INVALID_IDENTIFIER",
        )


class RateLimited(RateLimitError):
    """Caller exhausted its fixed-window budget."""

    def __init__(self, limit: int, window_seconds: float, reset_in_seconds: float):
        super().__init__(
            "Too many requests. Try again in a minute.",
            details={
                "limit": limit,
                "reset_in_seconds": round(max(reset_in_seconds, 0.0), 3),
            },
            code="RATE_LIMITED",
            retry_after=int(window_seconds),
        )
        self.reset_in_seconds = reset_in_seconds


class PayloadTooLarge(PayloadTooLargeError):
    """Advertised or transferred size exceeded the configured ceiling."""

    def __init__(self, limit: int, observed: Optional[int] = None, advertised: bool = False):
        details: Dict[str, Any] = {"limit_bytes": limit, "advertised": advertised}
        if observed is not None:
            details["observed_bytes"] = observed
        super().__init__("Extension file too large", details=details)


class UpstreamError(ExternalServiceError):
    """Update service answered with a failure, no body, or a broken transport.

    ``status_code`` mirrors the upstream status when it is an HTTP error,
    otherwise the generic gateway status is used.
    """

    def __init__(self, message: str = "Failed to fetch CRX file", upstream_status: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        status_code = None
        if upstream_status is not None:
            details["upstream_status"] = upstream_status
            if 400 <= upstream_status <= 599:
                status_code = upstream_status
        super().__init__(
            UPSTREAM_SERVICE,
            message,
            details=details,
            code="UPSTREAM_ERROR",
            status_code=status_code,
        )
        self.upstream_status = upstream_status


class UpstreamTimeout(UpstreamError):
    """Upstream did not finish within the fetch deadline."""

    def __init__(self, timeout_seconds: float):
        super().__init__("Upstream request timed out", details={"timeout_seconds": timeout_seconds})
        self.code = "UPSTREAM_TIMEOUT"


class ContainerParseError(ExternalServiceError):
    """Fetched bytes could not be turned into a ZIP archive.

    Subclasses say why; callers only ever see the generic code.
    """

    reason = "unparseable"

    def __init__(self, message: str = "Could not extract archive from CRX file",
                 details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details.setdefault("reason", self.reason)
        super().__init__(UPSTREAM_SERVICE, message, details=details, code="CONTAINER_PARSE_ERROR")


class UnsupportedContainerVersion(ContainerParseError):
    reason = "unsupported_version"

    def __init__(self, version: int):
        super().__init__(details={"format_version": version})
        self.version = version


class TruncatedContainer(ContainerParseError):
    reason = "truncated"

    def __init__(self, required: int, available: int):
        super().__init__(details={"required_bytes": required, "available_bytes": available})


class UnrecognizedFormat(ContainerParseError):
    reason = "unrecognized_format"

    def __init__(self, scanned: int):
        super().__init__(details={"scanned_bytes": scanned})
