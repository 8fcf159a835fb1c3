"""
Discovery and lifecycle of the signing plugin.

The gateway does not implement any signing algorithm. It imports a plugin
module by name at runtime and adapts whatever that module exports into a
``SignerHandle``. Three export shapes are recognised, probed in order:

1. a module-level ``sign`` function (optionally with a module-level ``init``)
2. a default export (``default`` or ``Signer`` attribute) that is a class;
   it is instantiated and its ``sign`` (else ``generate``) method is bound
3. a default export that is already an object exposing ``sign``

The first probe that produces a handle decides the outcome. A handle that
turns out to have no callable ``sign`` is a load failure; later probes are
not consulted.

``SignerState`` owns the handle and the readiness flag and is the only
place either is mutated.
"""

from __future__ import annotations

import asyncio
import contextlib
import importlib
import inspect
import logging
from dataclasses import dataclass
from types import ModuleType
from typing import Any, Callable, Optional, Sequence

from .errors import InitFailed
from .utils import call_maybe_async

logger = logging.getLogger(__name__)

DEFAULT_EXPORT_NAMES = ("default", "Signer")


@dataclass
class SignerHandle:
    """
    Canonical view of a loaded signing plugin.

    Attributes:
        sign: Callable taking the URL to sign; may be sync or async
        source: Name of the module the handle was built from
        init: Optional warm-up hook, invoked once per load
        instance: Object the handle was bound from, used only to look up
            alternate method names when ``sign`` fails
    """

    sign: Optional[Callable[..., Any]]
    source: str
    init: Optional[Callable[..., Any]] = None
    instance: Any = None


def _bound(obj: Any, name: str) -> Optional[Callable[..., Any]]:
    attr = getattr(obj, name, None)
    return attr if callable(attr) else None


def _is_plain_callable(value: Any) -> bool:
    # builtins and functools.partial count as functions too
    return callable(value) and not inspect.isclass(value)


def _default_export(module: ModuleType) -> Any:
    for name in DEFAULT_EXPORT_NAMES:
        export = getattr(module, name, None)
        if export is not None:
            return export
    return None


def probe_module_function(module: ModuleType, source: str) -> Optional[SignerHandle]:
    sign = getattr(module, "sign", None)
    if not _is_plain_callable(sign):
        return None
    return SignerHandle(sign=sign, init=_bound(module, "init"), source=source)


def probe_default_class(module: ModuleType, source: str) -> Optional[SignerHandle]:
    export = _default_export(module)
    if not inspect.isclass(export):
        return None
    instance = export()
    sign = _bound(instance, "sign") or _bound(instance, "generate")
    return SignerHandle(sign=sign, init=_bound(instance, "init"), instance=instance, source=source)


def probe_default_object(module: ModuleType, source: str) -> Optional[SignerHandle]:
    export = _default_export(module)
    if export is None or inspect.isclass(export) or _bound(export, "sign") is None:
        return None
    return SignerHandle(sign=export.sign, init=_bound(export, "init"), source=source)


SHAPE_PROBES: Sequence[Callable[[ModuleType, str], Optional[SignerHandle]]] = (
    probe_module_function,
    probe_default_class,
    probe_default_object,
)


def resolve_handle(module: ModuleType, source: str) -> Optional[SignerHandle]:
    """
    Run the shape probes against ``module`` and return the first handle.

    Returns:
        The handle produced by the first matching probe, or None when no
        probe recognises the module's exports
    """
    for probe in SHAPE_PROBES:
        handle = probe(module, source)
        if handle is not None:
            return handle
    return None


class SignerState:
    """
    Owner of the loaded signer and of the process-wide readiness flag.

    Lifecycle:
        Unloaded -> Loading -> Ready      (load succeeded)
        Unloaded -> Loading -> Unloaded   (load failed)
        Ready    -> Unloaded              (unload / reload / crash)

    ``load`` is idempotent and single-flight: callers arriving while a load
    is in progress await that same load instead of starting another.

    Attributes:
        module_name: Importable name of the plugin module
        launch_args: Arguments handed to the plugin's ``init`` hook
    """

    def __init__(
        self,
        module_name: str,
        launch_args: Sequence[str] = (),
        importer: Callable[[str], ModuleType] | None = None,
    ) -> None:
        self.module_name = module_name
        self.launch_args = list(launch_args)
        self._importer = importer or self._import_module
        self._handle: Optional[SignerHandle] = None
        self._ready = False
        self._source: Optional[str] = None
        self._inflight: Optional[asyncio.Task[bool]] = None

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def source(self) -> Optional[str]:
        return self._source

    @property
    def handle(self) -> Optional[SignerHandle]:
        return self._handle

    def is_ready(self) -> bool:
        return self._ready and self._handle is not None and callable(self._handle.sign)

    def init_options(self) -> dict[str, Any]:
        return {"launch_options": {"args": list(self.launch_args)}}

    async def load(self) -> bool:
        """
        Load the plugin unless it is already loaded.

        Never raises; a failed load leaves the state not ready.

        Returns:
            Readiness after the attempt
        """
        if self._ready:
            return True
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._load())
        return await asyncio.shield(self._inflight)

    def unload(self) -> None:
        if self._handle is not None:
            logger.info(f"Unloading signer {self._source!r}")
        self._handle = None
        self._ready = False
        self._source = None

    async def reload(self) -> bool:
        self.unload()
        return await self.load()

    async def cancel_load(self) -> None:
        """Cancel a load still in flight, e.g. one started at startup."""
        inflight = self._inflight
        if inflight is None or inflight.done():
            return
        inflight.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await inflight

    @staticmethod
    def _import_module(name: str) -> ModuleType:
        importlib.invalidate_caches()
        return importlib.import_module(name)

    async def _load(self) -> bool:
        source = self.module_name
        try:
            loop = asyncio.get_running_loop()
            module = await loop.run_in_executor(None, self._importer, source)
            handle = resolve_handle(module, source)
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"No compatible signer found in {source!r}: {exc!r}")
            self.unload()
            return False

        if handle is not None and handle.init is not None:
            try:
                await self._run_init(handle)
            except InitFailed as exc:
                logger.warning(f"{exc} (continuing; sign() may still work)")

        if handle is None or not callable(handle.sign):
            logger.warning(f"Module {source!r} did not expose a usable sign function. Signer not ready.")
            self.unload()
            return False

        self._handle = handle
        self._source = source
        self._ready = True
        logger.info(f"Signer loaded and ready (source={source})")
        return True

    async def _run_init(self, handle: SignerHandle) -> None:
        try:
            await call_maybe_async(handle.init, self.init_options())
        except Exception as exc:  # noqa: BLE001
            raise InitFailed(handle.source, exc) from exc
