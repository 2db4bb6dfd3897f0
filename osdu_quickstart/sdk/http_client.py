from typing import Optional
import httpx
from starlette.requests import Request
from osdu_quickstart.config import Settings


def build_http_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """
    Client shared by every outbound call (discovery, token, userinfo, search,
    delivery and object storage). Each call is bounded by HTTP_TIMEOUT_SECONDS.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(Settings.HTTP_TIMEOUT_SECONDS),
        transport=transport,
    )


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def forwarded_headers(request: Request) -> dict[str, str]:
    """Carry the caller's bearer credential over to the platform APIs."""
    auth_header = request.headers.get("Authorization")
    return {"Authorization": auth_header} if auth_header else {}
