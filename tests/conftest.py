import inspect
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from osdu_quickstart.config import Settings
from osdu_quickstart.http_server import create_app


API_BASE_URL = "https://osdu.example.com/api"
AUTH_BASE_URL = "https://login.example.com/tenant/v2.0"
AUTHORIZATION_ENDPOINT = "https://login.example.com/tenant/oauth2/v2.0/authorize"
TOKEN_ENDPOINT = "https://login.example.com/tenant/oauth2/v2.0/token"
USERINFO_ENDPOINT = "https://graph.example.com/oidc/userinfo"
DISCOVERY_URL = AUTH_BASE_URL + "/.well-known/openid-configuration"
SEARCH_URL = API_BASE_URL + "/indexSearch"
DELIVERY_URL = API_BASE_URL + "/GetResources"
REDIRECT_URL = "http://localhost:8080/auth/callback"

DISCOVERY_DOCUMENT = {
    "issuer": AUTH_BASE_URL,
    "authorization_endpoint": AUTHORIZATION_ENDPOINT,
    "token_endpoint": TOKEN_ENDPOINT,
    "userinfo_endpoint": USERINFO_ENDPOINT,
    "jwks_uri": "https://login.example.com/tenant/discovery/v2.0/keys",
    "response_types_supported": ["code", "id_token"],
}


class StubUpstream:
    """
    Stands in for every service the gateway talks to. Handlers are looked up
    by method and URL without its query string; every request is recorded.
    """

    def __init__(self):
        self.routes = {}
        self.requests: list[httpx.Request] = []
        self.route("GET", DISCOVERY_URL, json=DISCOVERY_DOCUMENT)

    def route(self, method, url, handler=None, **response_kwargs):
        if handler is None:
            status_code = response_kwargs.pop("status_code", 200)

            def handler(request):
                return httpx.Response(status_code, **response_kwargs)

        self.routes[(method, url)] = handler

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, str(request.url).split("?")[0]))
        if handler is None:
            return httpx.Response(404, text=f"no stub for {request.method} {request.url}")
        response = handler(request)
        if inspect.isawaitable(response):
            response = await response
        return response

    def calls(self, method, url):
        return [r for r in self.requests if r.method == method and str(r.url).split("?")[0] == url]

    def json_bodies(self, method, url):
        return [json.loads(r.content) for r in self.calls(method, url)]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture(autouse=True)
def settings(monkeypatch):
    monkeypatch.setattr(Settings, "OSDU_API_BASE_URL", API_BASE_URL)
    monkeypatch.setattr(Settings, "OSDU_AUTH_BASE_URL", AUTH_BASE_URL)
    monkeypatch.setattr(Settings, "OSDU_CLIENT_ID", "quickstart-client")
    monkeypatch.setattr(Settings, "OSDU_CLIENT_SECRET", "quickstart-secret")
    monkeypatch.setattr(Settings, "OSDU_REDIRECT_URL", REDIRECT_URL)
    monkeypatch.setattr(Settings, "OIDC_ENABLED", True)
    monkeypatch.setattr(Settings, "OIDC_SCOPES", "openid email offline_access")
    monkeypatch.setattr(Settings, "OIDC_REQUIRE_REFRESH_TOKEN", False)
    monkeypatch.setattr(Settings, "SEARCH_PATH", "/indexSearch")
    monkeypatch.setattr(
        Settings,
        "SEARCH_RESOURCE_TYPES",
        "master-data/Well,work-product-component/WellLog,work-product-component/WellborePath",
    )
    monkeypatch.setattr(Settings, "SEARCH_FACETS", "resource_type")
    monkeypatch.setattr(Settings, "DELIVERY_PATH", "/GetResources")
    monkeypatch.setattr(Settings, "DELIVERY_TARGET_REGION_ID", "")
    monkeypatch.setattr(Settings, "DOWNLOAD_BLOCK_SIZE", 4)
    monkeypatch.setattr(Settings, "SESSION_HTTPS_ONLY", False)
    return Settings


@pytest.fixture
def stub():
    return StubUpstream()


@pytest.fixture
def client(stub):
    app = create_app(transport=stub.transport())
    with TestClient(app) as test_client:
        yield test_client
