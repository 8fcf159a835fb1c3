from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Dict, Optional

import httpx
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .configuration import GatewaySettings, load_settings
from .coordinator import SigningCoordinator
from .crash_monitor import CrashMonitor
from .errors import SignGatewayError
from .middleware import RateLimiter, RateLimitMiddleware
from .models import HealthResponse, ProxyRelay, ReloadResponse, SignerInfo
from .plugin_loader import SignerState
from .utils import now_ms

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[GatewaySettings] = None,
    signer_state: Optional[SignerState] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    settings = settings or load_settings()
    state = signer_state or SignerState(settings.signer.module, settings.signer.launch_args)
    monitor = CrashMonitor(state, settings.crash_recovery.patterns)
    coordinator = SigningCoordinator(
        state,
        proxy_url=settings.proxy.fallback_url,
        http_client=http_client,
        proxy_timeout=settings.proxy.timeout,
        on_fault=monitor.observe,
    )

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_client = coordinator.http_client is None
        if owns_client:
            coordinator.http_client = httpx.AsyncClient(timeout=settings.proxy.timeout)
        monitor.install(asyncio.get_running_loop())
        # Not awaited: the server accepts requests while the signer warms up.
        app.state.startup_load = asyncio.create_task(state.load())
        logger.info(
            f"Sign server listening on {settings.server.host}:{settings.server.port} "
            f"(signer module={settings.signer.module}, proxy={'on' if coordinator.proxy_url else 'off'})"
        )
        try:
            yield
        finally:
            await state.cancel_load()
            startup_load = app.state.startup_load
            if not startup_load.done():
                startup_load.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await startup_load
            monitor.uninstall()
            if owns_client:
                await coordinator.http_client.aclose()
                coordinator.http_client = None

    app = FastAPI(title="Signer Gateway", version="0.1.0", lifespan=lifespan)

    app.state.settings = settings
    app.state.signer_state = state
    app.state.coordinator = coordinator
    app.state.crash_monitor = monitor
    app.state.rate_limiter = RateLimiter(points=settings.rate_limit.points, duration=settings.rate_limit.duration)

    app.add_middleware(RateLimitMiddleware, limiter=app.state.rate_limiter)
    # Outermost, so 429 responses still carry CORS headers.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SignGatewayError, _gateway_error_handler)
    app.include_router(_build_router())
    return app


async def _gateway_error_handler(request: Request, exc: SignGatewayError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def get_signer_state(request: Request) -> SignerState:
    return request.app.state.signer_state


def get_coordinator(request: Request) -> SigningCoordinator:
    return request.app.state.coordinator


def _signer_info(state: SignerState) -> SignerInfo:
    return SignerInfo(source=state.source)


async def _read_sign_url(request: Request) -> Any:
    if request.method == "GET":
        return request.query_params.get("url")
    body = await request.body()
    if not body:
        return None
    try:
        payload = json.loads(body)
    except ValueError:
        # JSONDecodeError and UnicodeDecodeError from undecodable bodies
        return None
    return payload.get("url") if isinstance(payload, dict) else None


def _build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/")
    def healthcheck(state: SignerState = Depends(get_signer_state)) -> Dict[str, Any]:
        return HealthResponse(
            ready=state.is_ready(),
            signer_info=_signer_info(state),
            timestamp=now_ms(),
        ).to_wire()

    @router.api_route("/sign", methods=["GET", "POST"])
    async def sign(request: Request, coordinator: SigningCoordinator = Depends(get_coordinator)) -> JSONResponse:
        url = await _read_sign_url(request)
        try:
            outcome = await coordinator.handle_sign_request(url)
        except SignGatewayError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Sign endpoint error")
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": "Sign error", "details": str(exc)},
            )

        if isinstance(outcome, ProxyRelay):
            return JSONResponse(status_code=outcome.status_code, content=outcome.body)
        return JSONResponse(content=outcome.to_wire())

    @router.post("/_reload_signer")
    async def reload_signer(state: SignerState = Depends(get_signer_state)) -> JSONResponse:
        try:
            await state.reload()
        except Exception as exc:  # noqa: BLE001
            logger.exception("Signer reload failed")
            return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})
        return JSONResponse(
            content=ReloadResponse(ready=state.is_ready(), signer_info=_signer_info(state)).to_wire()
        )

    return router


app = create_app()
