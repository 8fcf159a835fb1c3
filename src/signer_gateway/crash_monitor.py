"""
Self-healing for signer backends that crash.

Browser-driven signers die in ways that surface far from the request that
triggered them: an exception in a thread, an unretrieved task exception on
the event loop, or an uncaught error at the top of the process.
``CrashMonitor`` chains itself into each of those hooks, and the
coordinator reports invocation failures to it directly. When a failure
looks like the backend went away, the monitor runs the same
``SignerState.reload()`` transition the manual reload route uses.

Recovery is best effort: if the reload fails the gateway stays not ready
and the next sign request (or a manual reload) tries again.
"""

from __future__ import annotations

import asyncio
import logging
import re
import sys
import threading
from typing import Any, Iterable, Optional

from .plugin_loader import SignerState

logger = logging.getLogger(__name__)


class CrashMonitor:
    def __init__(self, state: SignerState, patterns: Iterable[str]) -> None:
        self.state = state
        self.patterns = [re.compile(re.escape(p), re.IGNORECASE) for p in patterns]
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._previous_excepthook = None
        self._previous_threading_hook = None
        self._previous_loop_handler = None
        self._installed = False
        self._pending: Optional[Any] = None

    def is_backend_crash(self, exc: BaseException) -> bool:
        text = f"{type(exc).__name__}: {exc}"
        return any(pattern.search(text) for pattern in self.patterns)

    def observe(self, exc: BaseException) -> bool:
        """
        Schedule a signer reload if ``exc`` looks like a backend crash.

        Safe to call from any thread. Returns True when recovery was scheduled.
        """
        if not self.is_backend_crash(exc):
            return False
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning(f"Backend crash detected but no event loop is being monitored: {exc!r}")
            return False
        logger.error(f"Signer backend crash detected, reloading: {exc!r}")
        self._pending = asyncio.run_coroutine_threadsafe(self.recover(), loop)
        return True

    async def recover(self) -> bool:
        try:
            ready = await self.state.reload()
        except Exception:  # noqa: BLE001
            logger.exception("Signer recovery failed")
            return False
        if ready:
            logger.info(f"Signer recovered (source={self.state.source})")
        else:
            logger.warning("Signer recovery did not restore readiness")
        return ready

    def install(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        if self._installed:
            return
        self._loop = loop or asyncio.get_running_loop()

        self._previous_excepthook = sys.excepthook
        sys.excepthook = self._excepthook

        self._previous_threading_hook = threading.excepthook
        threading.excepthook = self._threading_excepthook

        self._previous_loop_handler = self._loop.get_exception_handler()
        self._loop.set_exception_handler(self._loop_exception_handler)

        self._installed = True

    def uninstall(self) -> None:
        if not self._installed:
            return
        sys.excepthook = self._previous_excepthook
        threading.excepthook = self._previous_threading_hook
        if self._loop is not None and not self._loop.is_closed():
            self._loop.set_exception_handler(self._previous_loop_handler)
        self._installed = False
        self._loop = None

    def _excepthook(self, exc_type, exc, tb) -> None:
        if exc is not None:
            self.observe(exc)
        self._previous_excepthook(exc_type, exc, tb)

    def _threading_excepthook(self, args) -> None:
        if args.exc_value is not None:
            self.observe(args.exc_value)
        self._previous_threading_hook(args)

    def _loop_exception_handler(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exc = context.get("exception")
        if exc is not None:
            self.observe(exc)
        if self._previous_loop_handler is not None:
            self._previous_loop_handler(loop, context)
        else:
            loop.default_exception_handler(context)
