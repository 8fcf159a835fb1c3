"""
Tests for Signer Gateway HTTP endpoints.

Tests cover:
- Health check
- Signing through each plugin shape (GET and POST)
- Fallback to alternate signer methods
- Proxy fallback and its failure modes
- Error responses (400, 429, 500, 502, 503)
- Manual signer reload
- Rate limiting and CORS
"""

import sys
import time
import types

import httpx
from fastapi.testclient import TestClient

from signer_gateway.main import create_app
from signer_gateway.plugin_loader import SignerState


class TestHealthCheck:
    """Tests for the / endpoint."""

    def test_health_without_signer(self, client):
        """Health reports not ready when no plugin can be imported."""
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert data["success"] is True
        assert data["ready"] is False
        assert data["signerInfo"] == {"source": None}
        assert isinstance(data["timestamp"], int)

    def test_health_after_load(self, make_client, plugin_module):
        """Health reports the loaded plugin's source."""
        name = plugin_module(sign=lambda url: url)
        client = make_client(module=name)
        client.post("/_reload_signer")

        data = client.get("/").json()
        assert data["ready"] is True
        assert data["signerInfo"] == {"source": name}


class TestSign:
    """Tests for the /sign endpoint with a loaded plugin."""

    def test_module_function_signer(self, make_client, plugin_module):
        """An async module-level sign() returning a URL string."""

        async def sign(url):
            return "https://x/v?X-Bogus=abc123"

        client = make_client(module=plugin_module(sign=sign))
        response = client.get("/sign", params={"url": "https://x/v"})
        assert response.status_code == 200

        data = response.json()
        assert data["success"] is True
        assert data["signedUrl"] == "https://x/v?X-Bogus=abc123"
        assert data["signature"] == "abc123"
        assert data["raw"] == "https://x/v?X-Bogus=abc123"
        assert isinstance(data["timestamp"], int)

    def test_default_class_with_generate(self, make_client, plugin_module):
        """A default-exported class exposing only generate()."""

        class Signer:
            def generate(self, url):
                return {"signed_url": "https://y/z", "signature": "deadbeef"}

        client = make_client(module=plugin_module(default=Signer))
        response = client.post("/sign", json={"url": "https://y"})
        assert response.status_code == 200

        data = response.json()
        assert data["signedUrl"] == "https://y/z"
        assert data["signature"] == "deadbeef"
        assert data["raw"] == {"signed_url": "https://y/z", "signature": "deadbeef"}

    def test_default_object_signer(self, make_client, plugin_module):
        """A default-exported object with sign()."""
        signer = types.SimpleNamespace(sign=lambda url: {"signedUrl": url + "&sig=1", "x_bogus": "q"})
        client = make_client(module=plugin_module(default=signer))

        data = client.get("/sign", params={"url": "https://o/p?a=1"}).json()
        assert data["signedUrl"] == "https://o/p?a=1&sig=1"
        assert data["signature"] == "q"

    def test_sign_url_alternate_after_failure(self, make_client, plugin_module):
        """sign() raises, instance.signUrl() succeeds."""

        class Signer:
            def sign(self, url):
                raise RuntimeError("primary signer failed")

            def signUrl(self, url):
                return "https://w"

        client = make_client(module=plugin_module(default=Signer))
        response = client.get("/sign", params={"url": "https://w/in"})
        assert response.status_code == 200
        assert response.json()["signedUrl"] == "https://w"

    def test_every_strategy_fails(self, make_client, plugin_module):
        """A signer that always raises yields a 500 with details."""

        def sign(url):
            raise RuntimeError("Target closed")

        client = make_client(module=plugin_module(sign=sign))
        response = client.get("/sign", params={"url": "https://x"})
        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Sign error", "details": "Target closed"}

    def test_empty_result(self, make_client, plugin_module):
        client = make_client(module=plugin_module(sign=lambda url: ""))
        response = client.get("/sign", params={"url": "https://x"})
        assert response.status_code == 500
        assert response.json()["error"] == "Signer returned empty result"

    def test_unnormalizable_output_echoes_raw(self, make_client, plugin_module):
        client = make_client(module=plugin_module(sign=lambda url: {"token": "abc"}))
        response = client.get("/sign", params={"url": "https://x"})
        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "error": "Could not normalize signer output",
            "raw": {"token": "abc"},
        }


class TestSignValidation:
    """Input validation on /sign."""

    def test_missing_url_get(self, client):
        response = client.get("/sign")
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Missing 'url' parameter"}

    def test_missing_url_post(self, client):
        response = client.post("/sign", json={"href": "https://x"})
        assert response.status_code == 400

    def test_non_string_url_post(self, client):
        response = client.post("/sign", json={"url": 12})
        assert response.status_code == 400

    def test_invalid_json_body(self, client):
        response = client.post("/sign", content=b"{not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 400

    def test_undecodable_body(self, client):
        """A body that is not valid UTF-8 is treated as a missing url."""
        response = client.post("/sign", content=b'{"url": "\xff"}', headers={"Content-Type": "application/json"})
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Missing 'url' parameter"}

    def test_other_methods_not_allowed(self, client):
        response = client.put("/sign", json={"url": "https://x"})
        assert response.status_code == 405


class TestSignerUnavailable:
    """No plugin installed."""

    def test_no_signer_no_proxy(self, client):
        response = client.post("/sign", json={"url": "https://a/b"})
        assert response.status_code == 503
        assert response.json()["success"] is False

    def test_proxy_response_relayed(self, make_client):
        def handler(request):
            assert request.url.params["url"] == "https://a/b"
            return httpx.Response(200, json={"success": True, "signedUrl": "https://a/b?X-Bogus=p"})

        client = make_client(
            proxy="http://proxy.local/sign",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        response = client.get("/sign", params={"url": "https://a/b"})
        assert response.status_code == 200
        assert response.json() == {"success": True, "signedUrl": "https://a/b?X-Bogus=p"}

    def test_proxy_error_status_relayed(self, make_client):
        def handler(request):
            return httpx.Response(503, json={"success": False, "error": "upstream busy"})

        client = make_client(
            proxy="http://proxy.local/sign",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        response = client.get("/sign", params={"url": "https://a/b"})
        assert response.status_code == 503
        assert response.json()["error"] == "upstream busy"

    def test_proxy_unreachable(self, make_client):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(
            proxy="http://proxy.local/sign",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        response = client.post("/sign", json={"url": "https://a/b"})
        assert response.status_code == 502
        assert response.json() == {"success": False, "error": "Proxy fallback failed"}


class TestReload:
    """Tests for the /_reload_signer endpoint."""

    def test_reload_picks_up_newly_installed_plugin(self, make_client, monkeypatch):
        name = "signer_gateway_tests_late_plugin"
        client = make_client(module=name)
        assert client.post("/_reload_signer").json() == {
            "success": True,
            "ready": False,
            "signerInfo": {"source": None},
        }

        module = types.ModuleType(name)
        module.sign = lambda url: url + "?X-Bogus=late"
        monkeypatch.setitem(sys.modules, name, module)

        response = client.post("/_reload_signer")
        assert response.status_code == 200
        assert response.json() == {"success": True, "ready": True, "signerInfo": {"source": name}}
        assert client.get("/sign", params={"url": "https://x"}).json()["signature"] == "late"

    def test_reload_runs_init_again(self, make_client, plugin_module):
        calls = []
        name = plugin_module(sign=lambda url: url, init=lambda options: calls.append(options))
        client = make_client(module=name)
        client.post("/_reload_signer")
        client.post("/_reload_signer")
        # startup load plus possibly one per reload
        assert len(calls) >= 2
        assert calls[-1]["launch_options"]["args"][0] == "--no-sandbox"

    def test_reload_get_not_allowed(self, client):
        assert client.get("/_reload_signer").status_code == 405


class TestRateLimiting:
    """Tests for rate limiting behavior."""

    def test_default_limit_rejects_61st_request(self, make_client):
        client = make_client()
        for _ in range(60):
            assert client.get("/").status_code == 200

        response = client.get("/sign", params={"url": "https://x"})
        assert response.status_code == 429
        assert response.json() == {"success": False, "error": "Too many requests"}
        assert int(response.headers["Retry-After"]) >= 1

    def test_rejected_requests_do_not_load_signer(self, make_client, monkeypatch):
        """Once the budget is spent, /sign never reaches the loader."""
        name = "signer_gateway_tests_limited_plugin"
        client = make_client(module=name, points=1)
        assert client.get("/sign", params={"url": "https://x"}).status_code == 503

        calls = []
        module = types.ModuleType(name)
        module.sign = lambda url: url
        module.init = lambda options: calls.append(options)
        monkeypatch.setitem(sys.modules, name, module)

        assert client.get("/sign", params={"url": "https://x"}).status_code == 429
        assert client.post("/_reload_signer").status_code == 429
        assert calls == []
        assert client.app.state.signer_state.is_ready() is False

    def test_custom_points(self, make_client):
        client = make_client(points=2)
        assert client.get("/").status_code == 200
        assert client.get("/").status_code == 200
        assert client.get("/").status_code == 429


class TestCORS:
    """Tests for CORS configuration."""

    def test_cors_headers_present(self, client):
        response = client.get("/", headers={"Origin": "http://localhost:3000"})
        assert response.headers["access-control-allow-origin"] == "*"

    def test_preflight(self, client):
        response = client.options(
            "/sign",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST",
            },
        )
        assert response.status_code == 200


class TestLifespan:
    """Application startup and shutdown."""

    def test_shutdown_cancels_pending_startup_load(self, make_settings):
        """Stopping the app mid-import leaves no load running."""

        def importer(name):
            time.sleep(0.5)
            module = types.ModuleType(name)
            module.sign = lambda url: url
            return module

        state = SignerState("slow_signer", importer=importer)
        app = create_app(make_settings(), signer_state=state)
        with TestClient(app):
            pass

        assert app.state.startup_load.done()
        assert not state.is_ready()
