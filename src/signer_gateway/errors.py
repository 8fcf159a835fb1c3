"""
Error taxonomy for the signer gateway.

Every failure that can reach a client is a ``SignGatewayError`` carrying
the HTTP status it maps to and the public error message. The transport
layer renders them as ``{"success": false, "error": ...}`` plus whatever
``extra()`` contributes.
"""

from __future__ import annotations

from typing import Any, Dict


class SignGatewayError(Exception):
    status_code = 500
    error = "Sign error"

    def __init__(self, error: str | None = None) -> None:
        if error is not None:
            self.error = error
        super().__init__(self.error)

    def extra(self) -> Dict[str, Any]:
        return {}

    def to_payload(self) -> Dict[str, Any]:
        return {"success": False, "error": self.error, **self.extra()}


class InvalidInput(SignGatewayError):
    status_code = 400
    error = "Missing 'url' parameter"


class RateLimited(SignGatewayError):
    status_code = 429
    error = "Too many requests"

    def __init__(self, retry_after: float = 0.0) -> None:
        super().__init__()
        self.retry_after = retry_after


class SignerUnavailable(SignGatewayError):
    status_code = 503
    error = (
        "Signer not available. Install a compatible signer package "
        "(or set SIGNER_MODULE) and reload the signer."
    )


class ProxyUnavailable(SignGatewayError):
    status_code = 502
    error = "Proxy fallback failed"


class SignerInvocationFailed(SignGatewayError):
    """Every invocation strategy on a loaded signer raised."""

    status_code = 500
    error = "Sign error"

    def __init__(self, cause: BaseException) -> None:
        super().__init__()
        self.cause = cause

    def extra(self) -> Dict[str, Any]:
        return {"details": str(self.cause)}


class NormalizationFailed(SignGatewayError):
    status_code = 500

    def __init__(self, raw: Any = None) -> None:
        super().__init__()
        self.raw = raw

    def extra(self) -> Dict[str, Any]:
        return {"raw": self.raw}


class EmptyResult(NormalizationFailed):
    error = "Signer returned empty result"


class UnnormalizableOutput(NormalizationFailed):
    error = "Could not normalize signer output"


class InitFailed(Exception):
    """A signer's ``init`` hook raised. Logged by the loader, never propagated."""

    def __init__(self, source: str | None, cause: BaseException) -> None:
        super().__init__(f"init() of signer {source!r} failed: {cause}")
        self.source = source
        self.cause = cause
