"""
OpenID Connect authorization-code login against the OSDU identity provider.

`GET /` starts the sign-in by redirecting the browser to the provider's
authorization endpoint. `GET /auth/callback` validates the returned state,
exchanges the authorization code for tokens with the confidential client
credentials, fetches the user info, and returns everything to the browser as
JSON.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode, urlparse, urlunparse, parse_qsl
import hmac
import json
import secrets

import httpx
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import RedirectResponse, Response
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from osdu_quickstart.auth.discovery import ProviderMetadata
from osdu_quickstart.config import Settings, get_scopes
from osdu_quickstart.logging_util import get_logger
from osdu_quickstart.persistence import PersistenceFactory
from osdu_quickstart.sdk.http_client import get_http_client
from osdu_quickstart.utils.exceptions import (
    MissingClaimError,
    StateMismatchError,
    TokenExchangeError,
    UserInfoError,
)


logger = get_logger(__name__)

authRouter = APIRouter()

SESSION_STATE_KEY = "oidc_state"


class LoginTransaction(BaseModel):
    created_at: datetime
    expires_at: datetime
    redirect_uri: str


class OAuth2Token(BaseModel):
    """Token endpoint response. Provider specific fields such as id_token are kept as extras."""

    model_config = ConfigDict(extra="allow")

    access_token: str
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    expiry: Optional[datetime] = None

    @property
    def id_token(self) -> Optional[str]:
        return (self.model_extra or {}).get("id_token")

    def public_dump(self) -> dict:
        """The token fields returned to the browser."""
        data = {"access_token": self.access_token, "token_type": self.token_type}
        if self.refresh_token:
            data["refresh_token"] = self.refresh_token
        if self.expiry:
            data["expiry"] = self.expiry.isoformat()
        return data


class UserInfo(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    subject: str = Field(alias="sub")
    email: Optional[str] = None
    email_verified: Optional[bool] = None
    profile: Optional[str] = None


# Login transactions are keyed by their state value and live for
# OIDC_STATE_TTL_SECONDS; each one can complete a callback once.
login_transactions_store = PersistenceFactory.create(LoginTransaction, scope="login_transactions")


def get_provider(request: Request) -> ProviderMetadata:
    return request.app.state.provider


def build_url_with_params(base_uri: str, params: dict[str, str | None]) -> str:
    """
    Append or merge query parameters into base_uri.
    """
    url = urlparse(base_uri)
    query = dict(parse_qsl(url.query))
    query.update({k: v for k, v in params.items() if v is not None})
    return urlunparse(url._replace(query=urlencode(query)))


def ensure_aware_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def new_login_state(now: Optional[datetime] = None) -> str:
    """Create and store a fresh anti-forgery state for one sign-in."""
    now = now or datetime.now(timezone.utc)
    state = secrets.token_urlsafe(32)
    login_transactions_store.set(
        state,
        LoginTransaction(
            created_at=now,
            expires_at=now + timedelta(seconds=Settings.OIDC_STATE_TTL_SECONDS),
            redirect_uri=Settings.OSDU_REDIRECT_URL,
        ),
        ttl_in_sec=Settings.OIDC_STATE_TTL_SECONDS,
    )
    return state


def consume_login_state(returned_state: Optional[str], session_state: Optional[str]) -> LoginTransaction:
    """
    Check the state echoed by the provider against the one issued to this
    browser session. The stored transaction is removed whatever the outcome.
    """
    if not returned_state or not session_state:
        raise StateMismatchError()

    if not hmac.compare_digest(returned_state.encode(), session_state.encode()):
        login_transactions_store.delete(session_state)
        raise StateMismatchError()

    txn = login_transactions_store.get(returned_state)
    login_transactions_store.delete(returned_state)
    if txn is None:
        raise StateMismatchError()
    if ensure_aware_utc(txn.expires_at) < datetime.now(timezone.utc):
        logger.warning("Login state expired before the callback arrived")
        raise StateMismatchError()
    return txn


async def exchange_code(client: httpx.AsyncClient, provider: ProviderMetadata, code: str,
                        redirect_uri: str) -> OAuth2Token:
    """
    ## Token Exchange

    Exchanges the authorization code at the provider's token endpoint using
    the confidential client credentials (authorization_code grant). A
    rejection by the provider, such as a code that was already used, is
    surfaced with the provider's own response text.
    """
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "client_id": Settings.OSDU_CLIENT_ID,
        "client_secret": Settings.OSDU_CLIENT_SECRET,
    }
    try:
        response = await client.post(
            provider.token_endpoint,
            data=data,
            headers={"Accept": "application/json"},
        )
    except httpx.HTTPError as exc:
        raise TokenExchangeError(f"token request failed: {exc}") from exc

    if response.status_code < 200 or response.status_code >= 300:
        raise TokenExchangeError(
            f"cannot fetch token: {response.status_code} {response.reason_phrase}\nResponse: {response.text}"
        )

    try:
        payload = response.json()
    except ValueError as exc:
        raise TokenExchangeError(f"cannot parse token response: {response.text}") from exc

    if not isinstance(payload, dict) or not payload.get("access_token"):
        raise TokenExchangeError("server response missing access_token")

    try:
        token = OAuth2Token.model_validate(payload)
    except ValidationError as exc:
        raise TokenExchangeError(f"cannot parse token response: {exc}") from exc
    if token.expires_in:
        token.expiry = datetime.now(timezone.utc) + timedelta(seconds=token.expires_in)
    return token


async def fetch_user_info(client: httpx.AsyncClient, provider: ProviderMetadata, token: OAuth2Token) -> UserInfo:
    if not provider.userinfo_endpoint:
        raise UserInfoError("user info endpoint is not supported by this provider")

    try:
        response = await client.get(
            provider.userinfo_endpoint,
            headers={"Authorization": f"{token.token_type} {token.access_token}"},
        )
    except httpx.HTTPError as exc:
        raise UserInfoError(str(exc)) from exc

    if response.status_code != 200:
        raise UserInfoError(f"{response.status_code} {response.reason_phrase}: {response.text}")

    try:
        return UserInfo.model_validate(response.json())
    except ValueError as exc:
        raise UserInfoError(f"failed to decode userinfo: {exc}") from exc


@authRouter.get("/")
async def login(request: Request, provider: ProviderMetadata = Depends(get_provider)):
    """
    ## Sign-in

    Redirects the browser to the provider's authorization endpoint with a
    freshly generated state bound to this browser's session cookie.
    """
    state = new_login_state()
    request.session[SESSION_STATE_KEY] = state

    authorization_url = build_url_with_params(provider.authorization_endpoint, {
        "response_type": "code",
        "client_id": Settings.OSDU_CLIENT_ID,
        "redirect_uri": Settings.OSDU_REDIRECT_URL,
        "scope": " ".join(get_scopes()),
        "state": state,
    })
    logger.info(f"Redirecting to authorization endpoint {provider.authorization_endpoint}")
    return RedirectResponse(url=authorization_url, status_code=status.HTTP_302_FOUND)


@authRouter.get("/auth/callback")
async def auth_callback(
    request: Request,
    state: str | None = Query(None),
    code: str | None = Query(None),
    provider: ProviderMetadata = Depends(get_provider),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    """
    ## Callback

    1. State check: the returned state must be the one issued to this
       session, still unexpired. Otherwise 400 and nothing is exchanged.
    2. Code exchange for tokens at the token endpoint.
    3. The token response must carry an id_token.
    4. User info is fetched with the access token.
    5. Token, user info and id_token are returned as indented JSON.
    """
    session_state = request.session.pop(SESSION_STATE_KEY, None)
    try:
        txn = consume_login_state(state, session_state)
    except StateMismatchError:
        logger.warning("Callback state did not match the session state")
        raise

    token = await exchange_code(client, provider, code or "", txn.redirect_uri)

    id_token = token.id_token
    if not isinstance(id_token, str) or not id_token:
        raise MissingClaimError("id_token")

    if Settings.OIDC_REQUIRE_REFRESH_TOKEN and not token.refresh_token:
        raise MissingClaimError("refresh_token")

    user_info = await fetch_user_info(client, provider, token)
    logger.info(f"Signed in subject {user_info.subject}")

    body = {
        "OAuth2Token": token.public_dump(),
        "UserInfo": user_info.model_dump(by_alias=True, exclude_none=True),
        "id_token": id_token,
    }
    return Response(content=json.dumps(body, indent=4), media_type="application/json")
