"""
API Tests - gallery endpoints through FastAPI's TestClient.
"""

import pytest
from fastapi.testclient import TestClient

from market_mirror.core.dependencies import get_catalog_store
from market_mirror.main import app
from market_mirror.storage.catalog_store import CatalogLoadError, CatalogStore


class StaticStore(CatalogStore):
    def __init__(self, index, etag='"v1"'):
        super().__init__()
        self._static = index
        self._static_etag = etag

    async def _fetch(self):
        return self._static.model_dump_json().encode("utf-8"), self._static_etag


class BrokenStore(CatalogStore):
    async def _fetch(self):
        raise CatalogLoadError("Unable to load index.json (500)")


@pytest.fixture
def client_for():
    def _make(store):
        app.dependency_overrides[get_catalog_store] = lambda: store
        return TestClient(app)

    yield _make
    app.dependency_overrides.clear()


@pytest.fixture
def client(client_for, sample_index):
    return client_for(StaticStore(sample_index))


class TestQueryEndpoint:

    def test_search_text(self, client):
        response = client.post("/query", json={"filters": [{"criteria": [{"filterType": 10, "value": "lint"}]}]})

        assert response.status_code == 200
        result = response.json()["results"][0]
        assert [e["identifier"] for e in result["extensions"]] == ["acme.lint"]
        assert result["resultMetadata"][0]["metadataItems"] == [{"name": "TotalCount", "count": 1}]

    def test_etag_and_cors_headers(self, client):
        response = client.post("/query", json={})

        assert response.headers["etag"] == '"v1"'
        assert response.headers["access-control-allow-origin"] == "*"

    def test_no_etag_header_when_store_has_none(self, client_for, sample_index):
        response = client_for(StaticStore(sample_index, etag=None)).post("/query", json={})
        assert "etag" not in response.headers

    def test_malformed_body_means_no_filters(self, client):
        response = client.post(
            "/query", content=b"{not json", headers={"content-type": "application/json"}
        )

        assert response.status_code == 200
        assert response.json()["results"][0]["resultMetadata"][0]["metadataItems"][0]["count"] == 4

    def test_wrongly_typed_body_means_no_filters(self, client):
        response = client.post("/query", json={"filters": "everything"})
        assert response.json()["results"][0]["resultMetadata"][0]["metadataItems"][0]["count"] == 4

    def test_legacy_path(self, client):
        response = client.post("/api/extensionquery", json={"filters": [{"pageSize": 2}]})
        assert len(response.json()["results"][0]["extensions"]) == 2

    @pytest.mark.parametrize("criteria", [
        [{"filterType": 10, "value": "theme"}, {"filterType": "SomeFutureKind", "value": "x"}],
        [None, {"filterType": 10, "value": "theme"}],
        ["oops", {"filterType": 10, "value": "theme"}],
    ])
    def test_unreadable_criterion_keeps_other_criteria(self, client, criteria):
        response = client.post("/query", json={"filters": [{"criteria": criteria}]})

        assert response.status_code == 200
        result = response.json()["results"][0]
        assert [e["identifier"] for e in result["extensions"]] == ["acme.foo", "other.solarized"]
        assert result["resultMetadata"][0]["metadataItems"][0]["count"] == 2

    def test_fractional_page_size_is_truncated(self, client):
        response = client.post("/query", json={"filters": [{"pageSize": 2.5}]})

        result = response.json()["results"][0]
        assert len(result["extensions"]) == 2
        assert result["resultMetadata"][0]["metadataItems"][0]["count"] == 4

    def test_preflight(self, client):
        response = client.options("/query")

        assert response.status_code == 204
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["access-control-allow-headers"] == "*"

    def test_load_failure_is_generic_500(self, client_for):
        response = client_for(BrokenStore()).post("/query", json={})

        assert response.status_code == 500
        assert response.json() == {"message": "Internal Server Error"}


class TestItemsEndpoint:

    def test_extension_lookup(self, client):
        response = client.get("/items", params={"itemName": "acme.foo"})

        assert response.status_code == 200
        body = response.json()
        assert body["extension"]["identifier"] == "acme.foo"
        assert "version" not in body

    def test_version_lookup(self, client):
        response = client.get("/items", params={"itemName": "acme.foo", "version": "1.2.0"})

        assert response.status_code == 200
        body = response.json()
        assert body["version"]["version"] == "1.2.0"
        assert body["extension"]["identifier"] == "acme.foo"

    def test_unknown_version(self, client):
        response = client.get("/items", params={"itemName": "acme.foo", "version": "9.9.9"})

        assert response.status_code == 404
        assert response.json() == {"message": "Version 9.9.9 not found for acme.foo."}

    def test_unknown_extension(self, client):
        response = client.get("/items", params={"itemName": "acme.nope"})

        assert response.status_code == 404
        assert "acme.nope" in response.json()["message"]

    def test_item_name_required(self, client):
        response = client.get("/items")

        assert response.status_code == 400
        assert response.json() == {"message": "itemName query parameter required"}

    def test_preflight(self, client):
        assert client.options("/items").status_code == 204

    def test_load_failure(self, client_for):
        response = client_for(BrokenStore()).get("/items", params={"itemName": "acme.foo"})
        assert response.status_code == 500


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
