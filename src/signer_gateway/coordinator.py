"""
End-to-end handling of a sign request.

The coordinator makes sure a signer is loaded (lazily, on demand), falls
back to a remote signing proxy when none can be loaded, walks the chain of
invocation strategies on the loaded signer, and normalizes the result.
Every backend-facing failure leaves this module as one of the
``SignGatewayError`` subclasses; nothing raw reaches the transport layer.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Union

import httpx

from .errors import (
    EmptyResult,
    InvalidInput,
    ProxyUnavailable,
    SignerInvocationFailed,
    SignerUnavailable,
    UnnormalizableOutput,
)
from .models import NormalizedSignResponse, ProxyRelay
from .normalizer import EMPTY_RESULT, normalize
from .plugin_loader import SignerHandle, SignerState
from .utils import call_maybe_async, endpoint_name, now_ms, query_param, to_jsonable

logger = logging.getLogger(__name__)

# Tried in order on the plugin instance when the primary sign() raises.
ALTERNATE_METHODS = ("generate", "sign_url", "signUrl")

SIGNATURE_LOG_PREFIX = 16

SignOutcome = Union[NormalizedSignResponse, ProxyRelay]


class SigningCoordinator:
    """
    Orchestrates sign requests against the loaded plugin or the proxy.

    Attributes:
        state: Owner of the loaded signer
        proxy_url: Base URL of a compatible ``/sign`` endpoint used when no
            signer can be loaded; None disables proxying
    """

    def __init__(
        self,
        state: SignerState,
        proxy_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        proxy_timeout: float = 15.0,
        on_fault: Optional[Callable[[BaseException], Any]] = None,
    ) -> None:
        self.state = state
        self.proxy_url = proxy_url or None
        self.http_client = http_client
        self.proxy_timeout = proxy_timeout
        self.on_fault = on_fault

    async def handle_sign_request(self, url: Any) -> SignOutcome:
        """
        Sign ``url`` and return the normalized response.

        Returns:
            A successful NormalizedSignResponse, or a ProxyRelay when the
            request was delegated to the fallback proxy

        Raises:
            InvalidInput: ``url`` is missing, empty or not a string
            SignerUnavailable: No signer could be loaded and no proxy is set
            ProxyUnavailable: The proxy could not be reached or answered
                with something that is not JSON
            SignerInvocationFailed: Every invocation strategy raised
            EmptyResult / UnnormalizableOutput: The signer answered with
                nothing usable
        """
        if not url or not isinstance(url, str):
            raise InvalidInput()

        if not self.state.is_ready():
            await self.state.load()

        # Captured once; a concurrent reload may replace the state's handle.
        handle = self.state.handle
        if not self.state.is_ready() or handle is None:
            if self.proxy_url:
                return await self._delegate_to_proxy(url)
            raise SignerUnavailable()

        raw = await self._invoke(handle, url)

        result = normalize(raw, timestamp=now_ms())
        if not result.success:
            jsonable_raw = to_jsonable(raw)
            if result.error_kind == EMPTY_RESULT:
                raise EmptyResult(jsonable_raw)
            raise UnnormalizableOutput(jsonable_raw)

        result.raw = to_jsonable(raw)
        self._log_signed(url, result)
        return result

    async def _invoke(self, handle: SignerHandle, url: str) -> Any:
        try:
            return await call_maybe_async(handle.sign, url)
        except Exception as primary_error:  # noqa: BLE001
            logger.warning(f"Signer sign() raised {primary_error!r}; trying alternate methods")
            instance = handle.instance
            for name in ALTERNATE_METHODS:
                method = getattr(instance, name, None) if instance is not None else None
                if not callable(method):
                    continue
                try:
                    return await call_maybe_async(method, url)
                except Exception as alternate_error:  # noqa: BLE001
                    logger.warning(f"Alternate signer method {name}() raised {alternate_error!r}")
            self._report_fault(primary_error)
            raise SignerInvocationFailed(primary_error) from primary_error

    async def _delegate_to_proxy(self, url: str) -> ProxyRelay:
        logger.info(f"Proxying sign request to fallback: {self.proxy_url}")
        try:
            if self.http_client is not None:
                response = await self.http_client.get(self.proxy_url, params={"url": url}, timeout=self.proxy_timeout)
            else:
                async with httpx.AsyncClient(timeout=self.proxy_timeout) as client:
                    response = await client.get(self.proxy_url, params={"url": url})
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(f"Proxy fallback failed: {exc!r}")
            raise ProxyUnavailable() from exc
        return ProxyRelay(status_code=response.status_code, body=body)

    def _report_fault(self, exc: BaseException) -> None:
        if self.on_fault is None:
            return
        try:
            self.on_fault(exc)
        except Exception:  # noqa: BLE001
            logger.exception("Fault observer raised while handling a signer failure")

    @staticmethod
    def _log_signed(url: str, result: NormalizedSignResponse) -> None:
        aid = query_param(url, "aid")
        prefix = (result.signature or "")[:SIGNATURE_LOG_PREFIX]
        logger.info(
            f"SIGNED: {endpoint_name(url)}{f'?aid={aid}' if aid else ''} | signature: {prefix or '-'}",
            extra={"endpoint": endpoint_name(url), "aid": aid, "signature_prefix": prefix},
        )
