import os
from dotenv import load_dotenv

load_dotenv()


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _as_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.replace(",", " ").split() if item.strip()]


DEFAULT_SEARCH_RESOURCE_TYPES = (
    "master-data/Well,"
    "work-product-component/WellLog,"
    "work-product-component/WellborePath"
)


class Settings:

    # OSDU platform APIs
    OSDU_API_BASE_URL = os.getenv("OSDU_API_BASE_URL", "")
    SEARCH_PATH = os.getenv("SEARCH_PATH", "/indexSearch")
    SEARCH_RESOURCE_TYPES = os.getenv("SEARCH_RESOURCE_TYPES", DEFAULT_SEARCH_RESOURCE_TYPES)
    SEARCH_FACETS = os.getenv("SEARCH_FACETS", "resource_type")
    DELIVERY_PATH = os.getenv("DELIVERY_PATH", "/GetResources")
    DELIVERY_TARGET_REGION_ID = os.getenv("DELIVERY_TARGET_REGION_ID", "")
    DOWNLOAD_BLOCK_SIZE = int(os.getenv("DOWNLOAD_BLOCK_SIZE") or 65536)
    HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS") or 30)

    # OpenID Connect provider
    OIDC_ENABLED = _as_bool(os.getenv("OIDC_ENABLED"), default=True)
    OSDU_AUTH_BASE_URL = os.getenv("OSDU_AUTH_BASE_URL", "")
    OSDU_CLIENT_ID = os.getenv("OSDU_CLIENT_ID")
    OSDU_CLIENT_SECRET = os.getenv("OSDU_CLIENT_SECRET")
    OSDU_REDIRECT_URL = os.getenv("OSDU_REDIRECT_URL", "http://localhost:8080/auth/callback")
    # "offline_access" is what makes most providers hand out a refresh_token
    OIDC_SCOPES = os.getenv("OIDC_SCOPES", "openid email offline_access")
    OIDC_REQUIRE_REFRESH_TOKEN = _as_bool(os.getenv("OIDC_REQUIRE_REFRESH_TOKEN"))
    OIDC_STATE_TTL_SECONDS = int(os.getenv("OIDC_STATE_TTL_SECONDS") or 300)
    SESSION_SECRET_KEY = os.getenv("SESSION_SECRET_KEY", "change-me")
    SESSION_HTTPS_ONLY = _as_bool(os.getenv("SESSION_HTTPS_ONLY"))

    ## Persistence of login transactions
    STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "memory").lower()
    REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))

    # Server
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "8080"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("LOG_FILE")


def get_scopes() -> list[str]:
    """
    Scopes requested at the authorization endpoint. "openid" is mandatory
    for OpenID Connect, so it is always sent first.
    """
    scopes = [s for s in _as_list(Settings.OIDC_SCOPES) if s != "openid"]
    return ["openid", *scopes]


def get_search_resource_types() -> list[str]:
    return _as_list(Settings.SEARCH_RESOURCE_TYPES)


def get_search_facets() -> list[str]:
    return _as_list(Settings.SEARCH_FACETS)
