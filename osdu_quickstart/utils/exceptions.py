from fastapi import status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.requests import Request
from osdu_quickstart.logging_util import get_logger
import time


logger = get_logger(__name__)


class QuickstartError(Exception):
    """Base error; rendered to the caller as plain text with `status_code`."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class DiscoveryError(QuickstartError):
    pass


class StateMismatchError(QuickstartError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "state did not match"):
        super().__init__(message)


class TokenExchangeError(QuickstartError):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Failed to exchange token: {detail}")


class MissingClaimError(QuickstartError):
    def __init__(self, claim: str):
        self.claim = claim
        super().__init__(f"No {claim} field in oauth2 token.")


class UserInfoError(QuickstartError):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Failed to get userinfo: {detail}")


class UpstreamError(QuickstartError):
    status_code = status.HTTP_502_BAD_GATEWAY


class MalformedResponseError(UpstreamError):
    pass


class ResourceNotFoundError(QuickstartError):
    status_code = status.HTTP_404_NOT_FOUND


async def quickstart_error_handler(request: Request, exc: QuickstartError):
    logger.error(f"{request.method} {request.url.path} failed with {exc.status_code}: {exc.message}")
    return PlainTextResponse(exc.message, status_code=exc.status_code)


async def validation_exception_handler(request: Request, exc: RequestValidationError):

    invalid_params = []
    for error in exc.errors():
        invalid_params.append({
            "field": ".".join(map(str, error["loc"])),  # e.g. "query.srn"
            "reason": error["msg"],
            "type": error["type"]
        })

    logger.warning(f"Validation failed for {request.method} {request.url.path}: {invalid_params}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "success": False,
            "error_code": "VALIDATION_ERROR",
            "message": "The request parameters are invalid. Please check the 'details' field.",
            "details": invalid_params,
            "timestamp": time.time()
        },
    )
