"""OpenID Connect provider discovery."""

from typing import Optional
import httpx
from pydantic import BaseModel, ConfigDict, ValidationError
from osdu_quickstart.logging_util import get_logger
from osdu_quickstart.utils.exceptions import DiscoveryError


logger = get_logger(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


class ProviderMetadata(BaseModel):
    """
    The parts of the discovery document this gateway uses. Anything else the
    provider publishes is ignored.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: Optional[str] = None
    jwks_uri: Optional[str] = None


def discovery_url(base_url: str) -> str:
    return base_url.rstrip("/") + WELL_KNOWN_PATH


async def fetch_provider_metadata(client: httpx.AsyncClient, base_url: str) -> ProviderMetadata:
    """
    Resolve the provider's authorization, token and userinfo endpoints from
    its discovery document.

    Raises DiscoveryError when the document cannot be fetched, is not a JSON
    object, lacks a required endpoint, or names a different issuer.
    """
    if not base_url:
        raise DiscoveryError("OSDU_AUTH_BASE_URL is not set")

    url = discovery_url(base_url)
    logger.debug(f"Fetching discovery document from {url}")

    try:
        response = await client.get(url)
    except httpx.HTTPError as exc:
        raise DiscoveryError(f"Discovery request to {url} failed: {exc}") from exc

    if response.status_code != 200:
        raise DiscoveryError(f"Discovery request to {url} returned {response.status_code}: {response.text}")

    try:
        document = response.json()
    except ValueError as exc:
        raise DiscoveryError(f"Discovery document at {url} is not valid JSON") from exc

    if not isinstance(document, dict):
        raise DiscoveryError(f"Discovery document at {url} is not a JSON object")

    try:
        metadata = ProviderMetadata.model_validate(document)
    except ValidationError as exc:
        raise DiscoveryError(f"Discovery document at {url} is malformed: {exc}") from exc

    if metadata.issuer.rstrip("/") != base_url.rstrip("/"):
        raise DiscoveryError(
            f"Issuer did not match the issuer returned by provider, expected {base_url!r} got {metadata.issuer!r}"
        )

    return metadata
