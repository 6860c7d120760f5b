"""
API tests -- FastAPI endpoints via TestClient (no live server needed).
"""
import pytest
from fastapi.testclient import TestClient

from src.api.main import app
from src.engine.pipeline import DataResolutionPipeline, get_pipeline
from src.engine.providers import ProviderResult
from src.engine.snapshots import InMemorySnapshotStore

client = TestClient(app)


class _FailingExecutor:
    def execute(self, account_id, descriptor, provider):
        return ProviderResult.failed("gateway down")


@pytest.fixture
def offline_pipeline():
    pipeline = DataResolutionPipeline(_FailingExecutor(), snapshots=InMemorySnapshotStore(), synthetic_seed=3)
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    yield pipeline
    app.dependency_overrides.clear()


def test_health():
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_metrics_list():
    resp = client.get("/metrics")
    assert resp.status_code == 200
    metrics = resp.json()["metrics"]
    assert "metrics.clicks" in metrics
    assert "metrics.ctr" in metrics


def test_metrics_detail():
    resp = client.get("/metrics/detail")
    assert resp.status_code == 200
    ctr = next(m for m in resp.json() if m["id"] == "metrics.ctr")
    assert ctr["kind"] == "computed"
    assert ctr["unit"] == "percent"
    assert ctr["dependencies"] == ["metrics.clicks", "metrics.impressions"]


def test_dimensions():
    assert "segments.date" in client.get("/dimensions").json()["dimensions"]
    detail = client.get("/dimensions/detail").json()
    ad_group = next(d for d in detail if d["id"] == "ad_group.name")
    assert ad_group["resource"] == "ad_group"


def test_compile_block():
    resp = client.post("/blocks/compile", json={
        "spec": {"metrics": ["metrics.clicks"], "dimension": "campaign.name", "limit": 5},
        "scope": {"account_id": "1", "start": "2024-03-01", "end": "2024-03-31", "campaign_ids": []},
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["projection"] == ["campaign.name", "metrics.clicks"]
    assert data["resource"] == "campaign"
    assert data["limit"] == 5
    assert "IN (" not in data["gaql"]


def test_compile_empty_metrics_is_422():
    resp = client.post("/blocks/compile", json={
        "spec": {"metrics": []},
        "scope": {"account_id": "1", "start": "2024-03-01", "end": "2024-03-31"},
    })
    assert resp.status_code == 422
    assert resp.json()["detail"]["code"] == "invalid_spec"


def test_resolve_without_account_is_synthetic(offline_pipeline):
    resp = client.post("/blocks/resolve", json={
        "block_id": "b1",
        "report_id": "r1",
        "spec": {"metrics": ["metrics.clicks"], "dimension": "segments.date",
                 "comparison": {"enabled": True, "kind": "previous_period"}},
        "scope": {"start": "2024-03-01", "end": "2024-03-30"},
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["provenance"] == "synthetic"
    assert len(data["current_rows"]) == 30
    assert len(data["joined"]) == 30
    assert data["totals"][0]["metric_id"] == "metrics.clicks"


def test_resolve_live_failure_falls_back(offline_pipeline):
    resp = client.post("/blocks/resolve", json={
        "block_id": "b1",
        "report_id": "r1",
        "spec": {"metrics": ["metrics.ctr"], "visualization": "scorecard"},
        "scope": {"account_id": "123", "start": "2024-03-01", "end": "2024-03-30"},
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["provenance"] == "synthetic"
    assert data["joined"] == []


def test_resolve_invalid_spec_is_422(offline_pipeline):
    resp = client.post("/blocks/resolve", json={"block_id": "b1", "report_id": "r1", "spec": {"metrics": ["clicks"]}})
    assert resp.status_code == 422
    assert "namespaced" in resp.json()["detail"]["errors"][0]


def test_bulk_narratives_mock():
    dataset = {
        "current_rows": [{"dimension_value": None, "values": {"metrics.clicks": 12}}],
        "provenance": "synthetic",
    }
    resp = client.post("/narratives/bulk", json={
        "blocks": [
            {"block_id": "b1", "spec": {"title": "Clicks", "metrics": ["metrics.clicks"]}, "dataset": dataset},
            {"block_id": "b2", "spec": {"metrics": ["metrics.clicks"], "description": "kept"}, "dataset": dataset},
        ],
        "start": "2024-03-01",
        "end": "2024-03-31",
        "mode": "mock",
        "only_missing": True,
    })
    assert resp.status_code == 200
    data = resp.json()
    assert [r["block_id"] for r in data["results"]] == ["b1"]
    result = data["results"][0]
    assert result["state"] == "done"
    assert result["description"].startswith("Clicks")
    assert len(result["description_hash"]) == 16
    assert data["progress"]["completed"] == 1


def test_bulk_narratives_bad_period_is_422():
    resp = client.post("/narratives/bulk", json={
        "blocks": [{"block_id": "b1", "spec": {"metrics": ["metrics.clicks"]},
                    "dataset": {"provenance": "synthetic"}}],
        "start": "2024-03-31",
        "end": "2024-03-01",
    })
    assert resp.status_code == 422


def test_bulk_narratives_unknown_mode_is_422():
    resp = client.post("/narratives/bulk", json={
        "blocks": [{"block_id": "b1", "spec": {"metrics": ["metrics.clicks"]},
                    "dataset": {"provenance": "synthetic"}}],
        "start": "2024-03-01",
        "end": "2024-03-31",
        "mode": "foo",
    })
    assert resp.status_code == 422
