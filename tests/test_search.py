import asyncio
import json

import httpx
import pytest

from osdu_quickstart.http_server import create_app
from osdu_quickstart.search import SearchResponse, build_search_request, extract_files

from conftest import SEARCH_URL


WELL_RESULTS = {
    "results": [
        {
            "resource_type": "master-data/Well",
            "files": [{"filename": "a.csv", "srn": "srn:file/csv:X:1"}],
        }
    ]
}


def refs_as_dicts(files_by_type):
    return {
        resource_type: [ref.model_dump(by_alias=True) for ref in refs]
        for resource_type, refs in files_by_type.items()
    }


class TestBuildSearchRequest:

    def test_wraps_term_in_default_envelope(self):
        request = build_search_request("A05-01")
        assert request.model_dump() == {
            "fulltext": "A05-01",
            "metadata": {
                "resource_type": [
                    "master-data/Well",
                    "work-product-component/WellLog",
                    "work-product-component/WellborePath",
                ]
            },
            "facets": ["resource_type"],
        }

    def test_resource_types_come_from_settings(self, settings, monkeypatch):
        monkeypatch.setattr(settings, "SEARCH_RESOURCE_TYPES", "master-data/Wellbore")
        assert build_search_request("x").metadata.resource_type == ["master-data/Wellbore"]

    def test_every_call_builds_a_new_request(self):
        first = build_search_request("first")
        second = build_search_request("second")
        assert first is not second
        assert first.fulltext == "first"
        assert first.metadata.resource_type is not second.metadata.resource_type


class TestExtractFiles:

    def test_zero_results_is_an_empty_mapping(self):
        assert extract_files(SearchResponse.model_validate({"results": []})) == {}
        assert extract_files(SearchResponse.model_validate({})) == {}

    def test_missing_filename_becomes_empty_string(self):
        response = SearchResponse.model_validate(
            {"results": [{"resource_type": "master-data/Well", "files": [{"srn": "srn:file/csv:X:1"}]}]}
        )
        assert refs_as_dicts(extract_files(response)) == {
            "master-data/Well": [{"Filename": "", "Srn": "srn:file/csv:X:1"}]
        }

    def test_groups_by_resource_type_in_order(self):
        response = SearchResponse.model_validate({
            "results": [
                {"resource_type": "work-product-component/WellLog",
                 "files": [{"filename": "log1.las", "srn": "srn:1"}, {"filename": "log2.las", "srn": "srn:2"}]},
                {"resource_type": "master-data/Well", "files": []},
                {"resource_type": "work-product-component/WellLog",
                 "files": [{"filename": "log3.las", "srn": "srn:3"}]},
                {"files": [{"filename": "orphan.csv"}]},
            ],
            "totalCount": 4,
        })

        assert refs_as_dicts(extract_files(response)) == {
            "work-product-component/WellLog": [
                {"Filename": "log1.las", "Srn": "srn:1"},
                {"Filename": "log2.las", "Srn": "srn:2"},
                {"Filename": "log3.las", "Srn": "srn:3"},
            ],
            "": [{"Filename": "orphan.csv", "Srn": ""}],
        }


class TestFindEndpoint:

    def test_find_well(self, client, stub):
        stub.route("POST", SEARCH_URL, json=WELL_RESULTS)

        response = client.get("/find", params={"wellname": "A05-01"})

        assert response.status_code == 200
        assert response.json() == {"master-data/Well": [{"Filename": "a.csv", "Srn": "srn:file/csv:X:1"}]}
        (sent,) = stub.json_bodies("POST", SEARCH_URL)
        assert sent["fulltext"] == "A05-01"
        assert stub.calls("POST", SEARCH_URL)[0].headers["content-type"] == "application/json"

    def test_search_is_an_alias_of_find(self, client, stub):
        stub.route("POST", SEARCH_URL, json=WELL_RESULTS)
        assert client.get("/search", params={"wellname": "A05-01"}).json() == client.get(
            "/find", params={"wellname": "A05-01"}
        ).json()

    def test_no_results(self, client, stub):
        stub.route("POST", SEARCH_URL, json={"results": [], "totalCount": 0})
        response = client.get("/find", params={"wellname": "nothing"})
        assert response.status_code == 200
        assert response.json() == {}

    def test_null_results_is_an_empty_mapping(self, client, stub):
        stub.route("POST", SEARCH_URL, json={"results": None})
        response = client.get("/find", params={"wellname": "x"})
        assert response.status_code == 200
        assert response.json() == {}

    def test_null_files_is_an_empty_mapping(self, client, stub):
        stub.route("POST", SEARCH_URL, json={"results": [{"resource_type": "master-data/Well", "files": None}]})
        response = client.get("/find", params={"wellname": "x"})
        assert response.status_code == 200
        assert response.json() == {}

    def test_caller_authorization_is_forwarded(self, client, stub):
        stub.route("POST", SEARCH_URL, json=WELL_RESULTS)
        client.get("/find", params={"wellname": "A05-01"}, headers={"Authorization": "Bearer abc"})
        assert stub.calls("POST", SEARCH_URL)[0].headers["Authorization"] == "Bearer abc"

    def test_upstream_error_status_short_circuits(self, client, stub):
        stub.route("POST", SEARCH_URL, status_code=503, text="maintenance")
        response = client.get("/find", params={"wellname": "A05-01"})
        assert response.status_code == 502
        assert "503" in response.text

    def test_unreachable_search_api_short_circuits(self, client, stub):
        def unreachable(request):
            raise httpx.ConnectError("connection refused", request=request)

        stub.route("POST", SEARCH_URL, unreachable)
        response = client.get("/find", params={"wellname": "A05-01"})
        assert response.status_code == 502
        assert response.text.startswith("Search request failed")

    def test_unparseable_response_short_circuits(self, client, stub):
        stub.route("POST", SEARCH_URL, text="<html>gateway</html>")
        response = client.get("/find", params={"wellname": "A05-01"})
        assert response.status_code == 502


@pytest.mark.asyncio
async def test_concurrent_searches_do_not_share_terms(stub):
    async def search_api(request):
        term = json.loads(request.content)["fulltext"]
        # hold the first search open while the second one is built and sent
        await asyncio.sleep(0.05 if term == "first" else 0)
        return httpx.Response(200, json={
            "results": [{"resource_type": term, "files": [{"filename": f"{term}.csv", "srn": f"srn:{term}"}]}]
        })

    stub.route("POST", SEARCH_URL, search_api)
    app = create_app(transport=stub.transport())

    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            first, second = await asyncio.gather(
                client.get("/find", params={"wellname": "first"}),
                client.get("/find", params={"wellname": "second"}),
            )

    assert first.json() == {"first": [{"Filename": "first.csv", "Srn": "srn:first"}]}
    assert second.json() == {"second": [{"Filename": "second.csv", "Srn": "srn:second"}]}
    assert sorted(body["fulltext"] for body in stub.json_bodies("POST", SEARCH_URL)) == ["first", "second"]
