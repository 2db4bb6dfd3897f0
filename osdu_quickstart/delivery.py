"""
Trajectory fetch through the OSDU Delivery API.

The Delivery API answers with a pre-signed object-storage location for the
requested SRN; the object is then streamed straight from storage to the
caller without being held in memory.
"""

from typing import AsyncIterator, Optional

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.background import BackgroundTask

from osdu_quickstart.config import Settings
from osdu_quickstart.logging_util import get_logger
from osdu_quickstart.sdk.http_client import forwarded_headers, get_http_client
from osdu_quickstart.utils.exceptions import (
    MalformedResponseError,
    ResourceNotFoundError,
    UpstreamError,
)


logger = get_logger(__name__)

deliveryRouter = APIRouter()


class FileRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    srns: list[str] = Field(serialization_alias="SRNS")
    target_region_id: str = Field("", serialization_alias="TargetRegionID")


class TemporaryCredentials(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sas: Optional[str] = Field(None, alias="SAS")


class FileLocation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    end_point: Optional[str] = Field(None, alias="EndPoint")
    bucket: Optional[str] = Field(None, alias="Bucket")
    key: Optional[str] = Field(None, alias="Key")
    temporary_credentials: Optional[TemporaryCredentials] = Field(None, alias="TemporaryCredentials")


class DeliveryResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    srn: Optional[str] = Field(None, alias="SRN")
    file_location: Optional[FileLocation] = Field(None, alias="FileLocation")


class DeliveryResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    result: list[DeliveryResult] = Field(default_factory=list, alias="Result")


def build_file_request(srn: str) -> FileRequest:
    # more SRNs could be fetched at once; this endpoint takes one
    return FileRequest(srns=[srn], target_region_id=Settings.DELIVERY_TARGET_REGION_ID)


def build_file_url(location: FileLocation) -> str:
    """
    Pre-signed object URL: EndPoint + Bucket + "/" + Key + "?" + SAS.
    """
    sas = location.temporary_credentials.sas if location.temporary_credentials else None
    fields = {
        "EndPoint": location.end_point,
        "Bucket": location.bucket,
        "Key": location.key,
        "TemporaryCredentials.SAS": sas,
    }
    missing = [name for name, value in fields.items() if not value]
    if missing:
        raise MalformedResponseError(f"Delivery response file location is missing {', '.join(missing)}")

    logger.info(f"Extracted file parameters: {location.end_point}, {location.bucket}, {location.key}")
    return location.end_point + location.bucket + "/" + location.key + "?" + sas


async def get_file_location(client: httpx.AsyncClient, file_request: FileRequest,
                            headers: Optional[dict[str, str]] = None) -> FileLocation:
    url = Settings.OSDU_API_BASE_URL.rstrip("/") + Settings.DELIVERY_PATH
    payload = file_request.model_dump(by_alias=True)
    logger.debug(f"Request JSON: {payload}")

    try:
        response = await client.post(url, json=payload, headers=headers)
    except httpx.HTTPError as exc:
        logger.error(f"Delivery request to {url} failed with {exc!r}")
        raise UpstreamError(f"Delivery request failed: {exc}") from exc

    if response.is_error:
        raise UpstreamError(f"Delivery API returned {response.status_code}: {response.text}")

    try:
        delivery = DeliveryResponse.model_validate_json(response.content)
    except ValidationError as exc:
        raise MalformedResponseError(f"Delivery API returned an unreadable response: {exc}") from exc

    if not delivery.result:
        raise ResourceNotFoundError(f"No file location returned for {', '.join(file_request.srns)}")

    location = delivery.result[0].file_location
    if location is None:
        raise MalformedResponseError("Delivery response has no FileLocation")
    return location


async def open_blob(client: httpx.AsyncClient, file_url: str) -> httpx.Response:
    """
    Open an anonymous streaming GET on the pre-signed URL. The SAS in the
    query string is the only credential sent.
    """
    request = client.build_request("GET", file_url)
    try:
        response = await client.send(request, stream=True)
    except httpx.HTTPError as exc:
        # the URL carries the credential, so only the error type is reported
        logger.error(f"Blob download failed with {type(exc).__name__}")
        raise UpstreamError(f"Blob download failed: {type(exc).__name__}") from exc

    if response.is_error:
        await response.aread()
        await response.aclose()
        raise UpstreamError(f"Blob download returned {response.status_code}")
    return response


async def iter_blob(response: httpx.Response, block_size: int) -> AsyncIterator[bytes]:
    transferred = 0
    try:
        async for chunk in response.aiter_bytes(chunk_size=block_size):
            transferred += len(chunk)
            logger.debug(f"Downloaded {transferred} bytes")
            yield chunk
    finally:
        await response.aclose()
    logger.info(f"Blob download complete, {transferred} bytes")


@deliveryRouter.get("/fetch")
async def fetch_resource(
    request: Request,
    srn: str = Query(...),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    """
    Streams the file behind an SRN, e.g.
    /fetch?srn=srn:file/csv:6dd13750df8611e9b5df4fa704076d5c:1
    """
    location = await get_file_location(client, build_file_request(srn), forwarded_headers(request))
    blob = await open_blob(client, build_file_url(location))

    headers = {}
    # aiter_bytes decodes any content-encoding, which changes the length
    if "content-length" in blob.headers and "content-encoding" not in blob.headers:
        headers["Content-Length"] = blob.headers["content-length"]

    return StreamingResponse(
        iter_blob(blob, Settings.DOWNLOAD_BLOCK_SIZE),
        media_type=blob.headers.get("content-type", "application/octet-stream"),
        headers=headers,
        background=BackgroundTask(blob.aclose),
    )
