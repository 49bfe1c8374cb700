"""
Test configuration and fixtures.

No test talks to Cloudflare: every API client is built on a
RecordingTransport (httpx.MockTransport) that answers from canned
v4 envelopes and records the requests it saw, in order.
"""

import json
from typing import Callable, Generator

import httpx
import pytest

from scripts.setup_access import CloudflareAccess

ACCOUNT_ID = "acc123"
API_PREFIX = "/client/v4"
WORKER_URL = "https://mahoraga.example.workers.dev"
DOMAIN = "mahoraga.example.workers.dev"

REQUIRED_ENV = ("CLOUDFLARE_API_TOKEN", "CLOUDFLARE_ACCOUNT_ID", "MAHORAGA_WORKER_URL")
OPTIONAL_ENV = ("MAHORAGA_ALLOWED_EMAILS", "MAHORAGA_ACCESS_APP_NAME")


def ok(result) -> dict:
    return {"success": True, "errors": [], "messages": [], "result": result}


def fail(*messages: str, code: int = 10000) -> dict:
    return {
        "success": False,
        "errors": [{"code": code, "message": m} for m in messages],
        "messages": [],
        "result": None,
    }


class RecordingTransport(httpx.MockTransport):
    """Serves envelopes keyed by (method, path) and records every request."""

    def __init__(self, routes: dict[tuple[str, str], dict | Callable[[httpx.Request], dict]]):
        self.routes = routes
        self.requests: list[httpx.Request] = []
        super().__init__(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix(API_PREFIX)
        route = self.routes.get((request.method, path))
        if route is None:
            return httpx.Response(404, json=fail(f"no route for {request.method} {path}"))
        body = route(request) if callable(route) else route
        status = 200 if body.get("success") else 400
        return httpx.Response(status, json=body)

    @property
    def calls(self) -> list[tuple[str, str]]:
        return [(r.method, r.url.path.removeprefix(API_PREFIX)) for r in self.requests]

    def body(self, index: int) -> dict:
        return json.loads(self.requests[index].content)


def apps_path(suffix: str = "") -> str:
    return f"/accounts/{ACCOUNT_ID}/access/apps{suffix}"


IDP_PATH = f"/accounts/{ACCOUNT_ID}/access/identity_providers"


@pytest.fixture
def cf_env(monkeypatch) -> dict[str, str]:
    """Populate the required environment and clear the optional one."""
    env = {
        "CLOUDFLARE_API_TOKEN": "test-token",
        "CLOUDFLARE_ACCOUNT_ID": ACCOUNT_ID,
        "MAHORAGA_WORKER_URL": WORKER_URL,
    }
    for name, value in env.items():
        monkeypatch.setenv(name, value)
    for name in OPTIONAL_ENV:
        monkeypatch.delenv(name, raising=False)
    return env


@pytest.fixture
def empty_env(monkeypatch) -> None:
    for name in REQUIRED_ENV + OPTIONAL_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fresh_account_routes() -> dict:
    """An account with no applications; every create call succeeds."""
    return {
        ("GET", apps_path()): ok([{"id": "other", "name": "Other", "domain": "other.dev"}]),
        ("POST", IDP_PATH): ok({"id": "idp1", "name": "One-Time PIN", "type": "onetimepin"}),
        ("POST", apps_path()): lambda req: ok(
            {"id": "app1", **json.loads(req.content)}
        ),
        ("POST", apps_path("/app1/policies")): lambda req: ok(
            {"id": "pol1", **json.loads(req.content)}
        ),
    }


@pytest.fixture
def make_api() -> Generator[Callable[[RecordingTransport], CloudflareAccess], None, None]:
    clients: list[CloudflareAccess] = []

    def _make(transport: RecordingTransport) -> CloudflareAccess:
        api = CloudflareAccess(account_id=ACCOUNT_ID, token="test-token", transport=transport)
        clients.append(api)
        return api

    yield _make
    for api in clients:
        api.close()
