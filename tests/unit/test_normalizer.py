"""
Unit tests -- row normalizer (Google Ads nested rows, Meta Ads flat rows).
"""
import pytest

from src.engine.normalizer import normalize, normalize_meta, normalize_for_provider, meta_request_params
from src.engine.spec import BlockSpec


def test_nested_rows_flattened():
    spec = BlockSpec(metrics=["metrics.clicks", "metrics.impressions"], dimension="segments.date")
    rows = [
        {"segments": {"date": "2024-03-01"}, "metrics": {"clicks": "12", "impressions": "340"}},
        {"segments": {"date": "2024-03-02"}, "metrics": {"clicks": 7, "impressions": 210}},
    ]
    result = normalize(rows, spec)
    assert [r.dimension_value for r in result] == ["2024-03-01", "2024-03-02"]
    assert result[0].values == {"metrics.clicks": 12.0, "metrics.impressions": 340.0}
    assert isinstance(result[1].values["metrics.clicks"], float)


def test_missing_metric_is_zero():
    spec = BlockSpec(metrics=["metrics.clicks", "metrics.conversions"])
    result = normalize([{"metrics": {"clicks": "3"}}], spec)
    assert result[0].values["metrics.conversions"] == 0.0


def test_missing_dimension_is_none():
    spec = BlockSpec(metrics=["metrics.clicks"], dimension="campaign.name")
    result = normalize([{"metrics": {"clicks": 1}}], spec)
    assert result[0].dimension_value is None


def test_no_dimension_leaves_value_none():
    spec = BlockSpec(metrics=["metrics.clicks"])
    result = normalize([{"campaign": {"name": "X"}, "metrics": {"clicks": 1}}], spec)
    assert result[0].dimension_value is None


def test_unparseable_number_is_zero():
    spec = BlockSpec(metrics=["metrics.clicks"])
    assert normalize([{"metrics": {"clicks": "n/a"}}], spec)[0].values["metrics.clicks"] == 0.0


def test_no_aggregation_happens():
    spec = BlockSpec(metrics=["metrics.clicks"], dimension="campaign.name")
    rows = [{"campaign": {"name": "A"}, "metrics": {"clicks": 1}}] * 3
    assert len(normalize(rows, spec)) == 3


def test_fetched_dependencies_rebuild_computed_metric():
    spec = BlockSpec(metrics=["metrics.ctr"], visualization="scorecard")
    rows = [{"metrics": {"clicks": 5, "impressions": 200}}]
    result = normalize(rows, spec, fetched_metrics=["metrics.clicks", "metrics.impressions"])
    values = result[0].values
    assert values["metrics.clicks"] == 5.0
    assert values["metrics.ctr"] == pytest.approx(2.5)


def test_malformed_row_raises():
    spec = BlockSpec(metrics=["metrics.clicks"])
    with pytest.raises(ValueError):
        normalize(["not a row"], spec)


def test_none_rows_raise():
    with pytest.raises(ValueError):
        normalize(None, BlockSpec(metrics=["metrics.clicks"]))


# ── Meta Ads ────────────────────────────────────────────


def test_meta_flat_rows():
    spec = BlockSpec(metrics=["metrics.spend", "metrics.clicks"], dimension="segments.date")
    rows = [{"date_start": "2024-03-01", "spend": "12.50", "clicks": "40"}]
    result = normalize_meta(rows, spec)
    assert result[0].dimension_value == "2024-03-01"
    assert result[0].values == {"metrics.spend": 12.5, "metrics.clicks": 40.0}


def test_meta_campaign_name_camel_case_fallback():
    spec = BlockSpec(metrics=["metrics.spend"], dimension="campaign.name")
    result = normalize_meta([{"campaignName": "Summer", "spend": 3}], spec)
    assert result[0].dimension_value == "Summer"


def test_meta_breakdown_field():
    spec = BlockSpec(metrics=["metrics.impressions"], dimension="segments.platform")
    result = normalize_meta([{"publisher_platform": "instagram", "impressions": "900"}], spec)
    assert result[0].dimension_value == "instagram"


def test_normalize_for_provider_dispatches():
    spec = BlockSpec(metrics=["metrics.clicks"])
    assert normalize_for_provider("meta_ads", [{"clicks": 2}], spec)[0].values["metrics.clicks"] == 2.0
    assert normalize_for_provider("google_ads", [{"metrics": {"clicks": 3}}], spec)[0].values["metrics.clicks"] == 3.0


def test_meta_request_params():
    assert meta_request_params("segments.date") == {"level": "account", "time_increment": 1, "breakdowns": None}
    assert meta_request_params("segments.device")["breakdowns"] == ["impression_device"]
    assert meta_request_params("adset.name")["level"] == "adset"
    assert meta_request_params(None) == {"level": "campaign", "time_increment": None, "breakdowns": None}
