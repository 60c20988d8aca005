from typing import Dict, Iterator

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from app.schemas import SCHEMA_VERSION
from datastore.location_table import LocationTable, build_default_table
from services.consensus import ConsensusEngine
from services.locations import LocationService, build_default_service
from settings import get_settings
from storage.observation_store import ObservationStore, build_default_store

SESSION = "6f1c1c1e-7a52-4c4e-9d1e-0c1b2f3a4b5c"
OWNER = "a3b2c1d0-1111-2222-3333-444455556666"
CSV_CONTENT = f"""region,site_id,lat,lon,contributor_session,contributor
1,42,52.5200,13.4050,{SESSION},{OWNER}
1,42,52.5201,13.4051,{SESSION},{OWNER}
1,42,52.5199,13.4049,{SESSION},{OWNER}
1,43,52.5300,13.4100,{SESSION},{OWNER}
1,44,bad,13.4100,{SESSION},{OWNER}
"""


@pytest.fixture
def api_client(tmp_path, monkeypatch) -> Iterator[TestClient]:
    services: Dict[int, LocationService] = {}

    def build_test_service(workers: int | None = None) -> LocationService:
        worker_count = workers or 1
        service = services.get(worker_count)
        if service is None:
            service = LocationService(
                observations=ObservationStore(root_path=tmp_path / "observations"),
                table=LocationTable(name="test", persistence_path=tmp_path / "locations.json"),
                engine=ConsensusEngine(),
                workers=worker_count,
            )
            services[worker_count] = service
        return service

    def cache_clear() -> None:
        while services:
            _, service = services.popitem()
            service.shutdown()

    build_test_service.cache_clear = cache_clear  # type: ignore[attr-defined]

    monkeypatch.setattr("app.main.build_default_service", build_test_service)
    monkeypatch.setattr("app.api.build_default_service", build_test_service)

    app = create_app()
    with TestClient(app) as client:
        yield client

    cache_clear()


def _import(client: TestClient, content: str = CSV_CONTENT, recompute: bool = True):
    return client.post(
        "/observations/import",
        params={"recompute": str(recompute).lower()},
        files={"file": ("observations.csv", content, "text/csv")},
    )


def test_lifespan_shuts_down_service_and_clears_cache(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("OBSERVATION_STORE_ROOT_PATH", str(tmp_path / "observations"))
    monkeypatch.setenv("LOCATION_TABLE_PERSISTENCE_PATH", str(tmp_path / "locations.json"))
    for cache in (get_settings, build_default_store, build_default_table, build_default_service):
        cache.cache_clear()

    app = create_app()

    with TestClient(app):
        service_during = build_default_service()
        assert service_during.executor._shutdown is False

    service_after = build_default_service()
    try:
        assert service_after is not service_during
        assert service_during.executor._shutdown is True
    finally:
        service_after.shutdown()
        for cache in (get_settings, build_default_store, build_default_table, build_default_service):
            cache.cache_clear()


def test_import_recomputes_and_serves_locations(api_client: TestClient) -> None:
    response = _import(api_client)

    assert response.status_code == 200
    report = response.json()
    assert report["row_count"] == 4
    assert report["errors"] == [{"row_number": 6, "reason": "invalid coordinate"}]
    assert [r["status"] for r in report["recomputed"]] == ["updated", "updated"]

    response = api_client.get("/regions/1/locations")
    assert response.status_code == 200
    payload = response.json()
    assert payload["schema_version"] == SCHEMA_VERSION
    assert payload["region"] == 1
    assert set(payload["transmission_locations"]) == {"42", "43"}
    site = payload["transmission_locations"]["42"]
    assert site["lat"] == pytest.approx(52.52, abs=1e-9)
    assert site["lon"] == pytest.approx(13.405, abs=1e-9)
    assert set(site["properties"]["epsg3857"]) == {"x", "y"}


def test_import_empty_file_returns_bad_request(api_client: TestClient) -> None:
    response = _import(api_client, content="")

    assert response.status_code == 400
    assert response.json()["detail"] == "Uploaded file is empty."


def test_import_missing_columns_returns_bad_request(api_client: TestClient) -> None:
    response = _import(api_client, content="region,site_id\n1,2\n")

    assert response.status_code == 400
    assert "CSV missing required columns" in response.json()["detail"]


def test_recompute_unknown_site_reports_failure(api_client: TestClient) -> None:
    response = api_client.post("/regions/9/sites/9/recompute")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "failed"
    assert body["reason"] == "empty_input"
    assert body["location"] is None


def test_get_missing_site_returns_not_found(api_client: TestClient) -> None:
    response = api_client.get("/regions/1/sites/404")

    assert response.status_code == 404
    assert "reporting point 404" in response.json()["detail"]


def test_ground_truth_survives_recompute(api_client: TestClient) -> None:
    response = api_client.put("/regions/1/sites/42/ground-truth", json={"lat": 50.0, "lon": 10.0})
    assert response.status_code == 200
    assert response.json()["ground_truth"] is True

    _import(api_client)
    response = api_client.post("/regions/1/sites/42/recompute")

    assert response.json()["status"] == "ground_truth"
    stored = api_client.get("/regions/1/sites/42").json()
    assert (stored["lat"], stored["lon"], stored["ground_truth"]) == (50.0, 10.0, True)


def test_ground_truth_rejects_invalid_coordinates(api_client: TestClient) -> None:
    response = api_client.put("/regions/1/sites/42/ground-truth", json={"lat": 120.0, "lon": 10.0})

    assert response.status_code == 422


def test_schema_version_is_negotiated(api_client: TestClient) -> None:
    ok = api_client.get("/regions/1/locations", params={"schema_version": SCHEMA_VERSION})
    mismatch = api_client.get("/regions/1/locations", params={"schema_version": SCHEMA_VERSION + 1})

    assert ok.status_code == 200
    assert ok.json()["transmission_locations"] == {}
    assert mismatch.status_code == 406


def test_health(api_client: TestClient) -> None:
    assert api_client.get("/health").json() == {"status": "ok"}
