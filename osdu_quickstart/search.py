"""Well search through the OSDU Search API."""

from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from osdu_quickstart.config import Settings, get_search_facets, get_search_resource_types
from osdu_quickstart.logging_util import get_logger
from osdu_quickstart.sdk.http_client import forwarded_headers, get_http_client
from osdu_quickstart.utils.exceptions import MalformedResponseError, UpstreamError


logger = get_logger(__name__)

searchRouter = APIRouter()


class SearchMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource_type: list[str]


class SearchRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    fulltext: str
    metadata: SearchMetadata
    facets: list[str]


class FileEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    filename: Optional[str] = None
    srn: Optional[str] = None


class SearchResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    resource_type: Optional[str] = None
    files: list[FileEntry] = Field(default_factory=list)

    @field_validator("files", mode="before")
    @classmethod
    def _null_files(cls, v):
        return v or []


class SearchResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    results: list[SearchResult] = Field(default_factory=list)

    @field_validator("results", mode="before")
    @classmethod
    def _null_results(cls, v):
        return v or []


class FileRef(BaseModel):
    """One file of a search hit, as returned to the caller."""

    filename: str = Field(serialization_alias="Filename")
    srn: str = Field(serialization_alias="Srn")


def build_search_request(term: str) -> SearchRequest:
    """A new request per call; nothing is shared between concurrent searches."""
    return SearchRequest(
        fulltext=term,
        metadata=SearchMetadata(resource_type=get_search_resource_types()),
        facets=get_search_facets(),
    )


def extract_files(response: SearchResponse) -> dict[str, list[FileRef]]:
    """
    Group the files of each search result under its resource type, dropping
    everything else. Absent names and SRNs come back as empty strings.
    """
    files_by_type: dict[str, list[FileRef]] = {}
    for result in response.results:
        resource_type = result.resource_type or ""
        for entry in result.files:
            ref = FileRef(filename=entry.filename or "", srn=entry.srn or "")
            files_by_type.setdefault(resource_type, []).append(ref)
            logger.debug(f"Adding value: {resource_type} {ref.filename} {ref.srn}")
    return files_by_type


async def run_search(client: httpx.AsyncClient, search_request: SearchRequest,
                     headers: Optional[dict[str, str]] = None) -> SearchResponse:
    url = Settings.OSDU_API_BASE_URL.rstrip("/") + Settings.SEARCH_PATH
    payload = search_request.model_dump()
    logger.debug(f"Request JSON: {payload}")

    try:
        response = await client.post(url, json=payload, headers=headers)
    except httpx.HTTPError as exc:
        logger.error(f"Search request to {url} failed with {exc!r}")
        raise UpstreamError(f"Search request failed: {exc}") from exc

    if response.is_error:
        raise UpstreamError(f"Search API returned {response.status_code}: {response.text}")

    try:
        return SearchResponse.model_validate_json(response.content)
    except ValidationError as exc:
        raise MalformedResponseError(f"Search API returned an unreadable response: {exc}") from exc


@searchRouter.get("/find")
@searchRouter.get("/search")
async def find_well(
    request: Request,
    wellname: str = Query("*"),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    """
    Finds a well by name and returns the files and SRNs of each matching
    resource type, e.g. /find?wellname=A05-01
    """
    search_response = await run_search(client, build_search_request(wellname), forwarded_headers(request))
    files_by_type = extract_files(search_response)
    logger.info(f"Search for {wellname!r} matched {sum(map(len, files_by_type.values()))} files")
    return {
        resource_type: [ref.model_dump(by_alias=True) for ref in refs]
        for resource_type, refs in files_by_type.items()
    }
