"""
Signer Gateway - HTTP façade for pluggable URL-signing backends

This package provides a FastAPI-based web service that loads a URL-signing
plugin at runtime and exposes it over HTTP. It enables:

- Runtime discovery of a signing plugin by module name
- Normalization of heterogeneous signer output into one response shape
- Fallback to alternate signer methods and to a remote signing proxy
- Per-client rate limiting ahead of any signing work
- Automatic reload of the signer after a backend crash

The gateway never implements a signing algorithm itself; that belongs to
the plugin (for example a headless-browser based signer).

Key Components:
    - main: FastAPI application factory and HTTP endpoint definitions
    - plugin_loader: Plugin shape probing and signer lifecycle
    - normalizer: Conversion of raw signer output to the wire shape
    - coordinator: Sign request orchestration and proxy fallback
    - middleware: Per-client rate limiting
    - crash_monitor: Process-wide fault observation and signer recovery
    - configuration: Config loading from config.yaml and the environment
    - errors: Error taxonomy and HTTP status mapping

Usage:
    Run the API server with:
        python -m signer_gateway

    Or directly through uvicorn:
        uvicorn signer_gateway.main:app --host 0.0.0.0 --port 8080
"""
