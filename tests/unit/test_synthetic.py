"""
Unit tests -- synthetic dataset generation.
"""
from datetime import date, timedelta

import pytest

from src.engine.spec import BlockSpec, ComparisonSettings, DateWindow
from src.engine.synthetic import generate_synthetic, DEFAULT_WINDOW_DAYS, UNKNOWN_DIMENSION_ROWS
from src.semantic.metric_catalog import load_metric_catalog

MARCH = DateWindow(start=date(2024, 3, 1), end=date(2024, 3, 30))


def test_date_dimension_one_row_per_day():
    spec = BlockSpec(metrics=["metrics.clicks"], dimension="segments.date")
    dataset = generate_synthetic(spec, MARCH, seed=1)
    assert dataset.provenance == "synthetic"
    assert len(dataset.current_rows) == 30
    assert dataset.current_rows[0].dimension_value == "2024-03-01"
    assert dataset.current_rows[-1].dimension_value == "2024-03-30"


def test_missing_window_defaults_to_last_30_days():
    spec = BlockSpec(metrics=["metrics.clicks"], dimension="segments.date")
    rows = generate_synthetic(spec, None, seed=1).current_rows
    assert len(rows) == DEFAULT_WINDOW_DAYS
    assert rows[-1].dimension_value == date.today().isoformat()
    assert rows[0].dimension_value == (date.today() - timedelta(days=DEFAULT_WINDOW_DAYS - 1)).isoformat()


def test_catalog_dimension_uses_demo_values():
    spec = BlockSpec(metrics=["metrics.clicks"], dimension="segments.device")
    rows = generate_synthetic(spec, MARCH, seed=1).current_rows
    assert [r.dimension_value for r in rows] == list(load_metric_catalog().dimension("segments.device").demo_values)


def test_unknown_dimension_gets_fake_labels():
    spec = BlockSpec(metrics=["metrics.clicks"], dimension="custom.audience")
    rows = generate_synthetic(spec, MARCH, seed=7).current_rows
    assert len(rows) == UNKNOWN_DIMENSION_ROWS
    assert len({r.dimension_value for r in rows}) == UNKNOWN_DIMENSION_ROWS


def test_no_dimension_single_row():
    spec = BlockSpec(metrics=["metrics.clicks", "metrics.ctr"], visualization="scorecard")
    rows = generate_synthetic(spec, MARCH, seed=1).current_rows
    assert len(rows) == 1
    assert rows[0].dimension_value is None


def test_every_requested_metric_present():
    spec = BlockSpec(metrics=["metrics.clicks", "metrics.ctr", "metrics.video_views"], dimension="campaign.name")
    for row in generate_synthetic(spec, MARCH, seed=3).current_rows:
        for metric_id in spec.metrics:
            assert metric_id in row.values
            assert row.values[metric_id] >= 0


def test_computed_metric_consistent_with_dependencies():
    spec = BlockSpec(metrics=["metrics.ctr"], dimension="segments.device")
    for row in generate_synthetic(spec, MARCH, seed=5).current_rows:
        expected = row.values["metrics.clicks"] / row.values["metrics.impressions"] * 100
        assert row.values["metrics.ctr"] == pytest.approx(expected, abs=1e-3)


def test_seed_is_reproducible():
    spec = BlockSpec(metrics=["metrics.clicks"], dimension="segments.date")
    first = generate_synthetic(spec, MARCH, seed=42).current_rows
    second = generate_synthetic(spec, MARCH, seed=42).current_rows
    assert first == second


def test_comparison_rows_only_when_enabled():
    spec = BlockSpec(metrics=["metrics.clicks"], dimension="segments.device")
    assert generate_synthetic(spec, MARCH, seed=1).comparison_rows == []

    compared = spec.model_copy(update={"comparison": ComparisonSettings(enabled=True)})
    dataset = generate_synthetic(compared, MARCH, seed=1)
    assert len(dataset.comparison_rows) == len(dataset.current_rows)
    for cur, prior in zip(dataset.current_rows, dataset.comparison_rows):
        assert cur.dimension_value == prior.dimension_value
        ratio = prior.values["metrics.clicks"] / cur.values["metrics.clicks"]
        assert 0.79 <= ratio <= 1.21
