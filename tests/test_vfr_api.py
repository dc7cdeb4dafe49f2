import pytest
from fastapi.testclient import TestClient

from api.v1 import vfr_router
from conftest import BASE_TIME, StubForecastSource, good_weather
from services.vfr_windows import VfrWindowService
from vfr.thresholds import STANDARD_THRESHOLDS

ROUTE = [
    {"name": "EGLL", "lat": 51.4700, "lon": -0.4543, "ete": 30, "elevation": 83},
    {"name": "EGKK", "lat": 51.1537, "lon": -0.1821, "elevation": 202},
]


@pytest.fixture
def stub_service(monkeypatch: pytest.MonkeyPatch) -> StubForecastSource:
    source = StubForecastSource(lambda lat, lon, ts: good_weather(ts), start=BASE_TIME, hours=12)
    monkeypatch.setattr(vfr_router, "vfr_window_service", VfrWindowService(source))
    return source


def _search_body(**overrides):
    body = {
        "waypoints": ROUTE,
        "default_altitude": 3000,
        "flight_duration_minutes": 60,
        "include_night_flights": True,
    }
    body.update(overrides)
    return body


def test_search_returns_windows_and_job_id(client: TestClient, stub_service: StubForecastSource) -> None:
    response = client.post("/api/v1/vfr/windows", json=_search_body(job_id="abc123"))
    assert response.status_code == 200
    body = response.json()
    assert body["job_id"] == "abc123"
    assert body["limited_by"] is None
    assert len(body["windows"]) == 1
    window = body["windows"][0]
    assert window["worst_condition"] == "good"
    assert window["duration"] == pytest.approx(12 * 60)
    assert window["label"]["duration"] == "12h 0m window"
    assert body["detail_rows"] == []
    assert stub_service.full_forecast_calls


def test_search_rejects_inverted_custom_thresholds(client: TestClient, stub_service: StubForecastSource) -> None:
    thresholds = STANDARD_THRESHOLDS.to_payload()
    thresholds["visibility"] = {"poor": 8, "marginal": 5}
    response = client.post("/api/v1/vfr/windows", json=_search_body(threshold_preset="custom", thresholds=thresholds))
    assert response.status_code == 422
    assert response.json()["detail"]["violations"] == ["visibility"]
    assert stub_service.full_forecast_calls == []


def test_search_rejects_incomplete_custom_thresholds(client: TestClient, stub_service: StubForecastSource) -> None:
    response = client.post("/api/v1/vfr/windows", json=_search_body(thresholds={"visibility": {"poor": 5}}))
    assert response.status_code == 422


def test_search_validates_request_fields(client: TestClient, stub_service: StubForecastSource) -> None:
    response = client.post("/api/v1/vfr/windows", json=_search_body(flight_duration_minutes=-5))
    assert response.status_code == 422
    response = client.post("/api/v1/vfr/windows", json=_search_body(minimum_condition="poor"))
    assert response.status_code == 422


def test_search_with_empty_route_reports_limitation(client: TestClient, stub_service: StubForecastSource) -> None:
    response = client.post("/api/v1/vfr/windows", json=_search_body(waypoints=[]))
    assert response.status_code == 200
    assert response.json()["limited_by"] == "No waypoints in flight plan"


def test_export_returns_csv(client: TestClient, stub_service: StubForecastSource) -> None:
    response = client.post("/api/v1/vfr/windows/export", json=_search_body())
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    lines = response.text.strip().splitlines()
    assert lines[0].startswith("departure_time,waypoint_name")
    # 13 hourly departures over two waypoints.
    assert len(lines) == 1 + 13 * 2


def test_evaluate_conditions_preview(client: TestClient) -> None:
    response = client.post(
        "/api/v1/vfr/conditions/evaluate",
        json={
            "altitude": 3000,
            "terrain_elevation": 500,
            "wind_speed": 12,
            "wind_dir": 270,
            "weather": {"visibility": 3, "precipitation": 0},
        },
    )
    assert response.status_code == 200
    body = response.json()
    assert body["condition"] == "poor"
    assert body["reasons"] == ["Low visibility (3km)"]


def test_evaluate_conditions_at_terminal_returns_runway(client: TestClient) -> None:
    response = client.post(
        "/api/v1/vfr/conditions/evaluate",
        json={
            "altitude": 500,
            "terrain_elevation": 400,
            "wind_speed": 10,
            "wind_dir": 95,
            "is_terminal": True,
            "runways": [
                {"id": "09/27", "low_end": {"ident": "09", "heading": 90}, "high_end": {"ident": "27", "heading": 270}}
            ],
        },
    )
    assert response.status_code == 200
    body = response.json()
    assert body["condition"] == "good"
    assert body["best_runway"]["runway_ident"] == "09"


def test_rules_endpoint(client: TestClient) -> None:
    response = client.post(
        "/api/v1/vfr/conditions/rules",
        json={"visibility": 3, "cloud_base_agl": 1000, "terrain_clearance": 3000},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["condition"] == "poor"
    assert body["reasons"] == ["Low ceiling (1000ft AGL)", "Low visibility (3km)"]

    response = client.post(
        "/api/v1/vfr/conditions/rules",
        json={"visibility": 10, "threshold_preset": "conservative"},
    )
    assert response.json()["condition"] == "marginal"


def test_best_runway_endpoint(client: TestClient) -> None:
    response = client.post(
        "/api/v1/vfr/runways/best",
        json={
            "runways": [
                {"id": "09/27", "low_end": {"ident": "09", "heading": 90}, "high_end": {"ident": "27", "heading": 270}}
            ],
            "wind_dir": 95,
            "wind_speed": 20,
        },
    )
    assert response.status_code == 200
    body = response.json()
    assert body["runway_ident"] == "09"
    assert body["crosswind"] == pytest.approx(1.7, abs=0.1)
    assert body["headwind"] == pytest.approx(19.9, abs=0.1)

    empty = client.post("/api/v1/vfr/runways/best", json={"runways": [], "wind_dir": 95, "wind_speed": 20})
    assert empty.status_code == 422


def test_threshold_presets_and_validation(client: TestClient) -> None:
    presets = client.get("/api/v1/vfr/thresholds/presets").json()
    assert set(presets) == {"standard", "conservative"}
    assert presets["standard"]["visibility"] == {"poor": 5, "marginal": 8}

    valid = client.post("/api/v1/vfr/thresholds/validate", json={"thresholds": presets["conservative"]})
    assert valid.json() == {"valid": True, "violations": []}

    broken = dict(presets["standard"], crosswind={"poor": 10, "marginal": 15})
    invalid = client.post("/api/v1/vfr/thresholds/validate", json={"thresholds": broken})
    assert invalid.json() == {"valid": False, "violations": ["crosswind"]}

    malformed = client.post("/api/v1/vfr/thresholds/validate", json={"thresholds": {"visibility": {}}})
    assert malformed.status_code == 400


def test_health_and_info(client: TestClient) -> None:
    assert client.get("/health").json()["status"] == "ok"
    assert client.get("/api/v1/health").json()["status"] == "ok"
    info = client.get("/api/v1/info").json()
    assert info["name"] == "VFR Window Planner"
    assert "forecast_model" in info
