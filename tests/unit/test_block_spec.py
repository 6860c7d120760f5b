"""
Unit tests -- BlockSpec / Scope / DateWindow models and date helpers.
"""
from datetime import date, datetime

import pytest
from pydantic import ValidationError

from src.core.utils import iso_day, to_date
from src.engine.errors import InvalidSpec
from src.engine.spec import BlockSpec, CanonicalRow, DateWindow, ResolvedDataset, Scope


def test_block_defaults():
    spec = BlockSpec(metrics=["metrics.clicks"])
    assert spec.title == "Data Block"
    assert spec.visualization == "table"
    assert spec.limit == 10
    assert spec.sort_order == "DESC"
    assert spec.comparison.enabled is False
    assert spec.order_field == "metrics.clicks"


def test_metrics_deduplicated_in_order():
    spec = BlockSpec(metrics=["metrics.b", "metrics.a", "metrics.b"])
    assert spec.metrics == ("metrics.b", "metrics.a")


def test_block_is_immutable():
    spec = BlockSpec(metrics=["metrics.clicks"])
    with pytest.raises(ValidationError):
        spec.limit = 5


def test_limit_must_be_positive():
    with pytest.raises(ValidationError):
        BlockSpec(metrics=["metrics.clicks"], limit=0)


def test_unknown_visualization_rejected():
    with pytest.raises(ValidationError):
        BlockSpec(metrics=["metrics.clicks"], visualization="heatmap")


def test_scope_campaigns_deduplicated_as_strings():
    scope = Scope(campaign_ids=[1, "1", 2])
    assert scope.campaign_ids == ("1", "2")


def test_scope_live_source():
    assert Scope(account_id="123").has_live_source
    assert not Scope(account_id="  ").has_live_source
    assert not Scope().has_live_source


def test_window_parse_and_days():
    window = DateWindow.parse("2024-02-28", datetime(2024, 3, 1, 12, 0))
    assert window.start == date(2024, 2, 28)
    assert window.days == 3
    assert window.dates()[1] == date(2024, 2, 29)


@pytest.mark.parametrize("start,end", [(None, "2024-03-01"), ("2024-03-01", ""), ("yesterday", "2024-03-01")])
def test_window_parse_rejects_malformed(start, end):
    with pytest.raises(InvalidSpec):
        DateWindow.parse(start, end)


def test_with_window_replaces_dates():
    scope = Scope(account_id="1", start="2024-03-01", end="2024-03-10")
    shifted = scope.with_window(DateWindow(start=date(2023, 3, 1), end=date(2023, 3, 10)))
    assert shifted.window().start == date(2023, 3, 1)
    assert shifted.account_id == "1"


def test_with_provenance_copies():
    dataset = ResolvedDataset(current_rows=[CanonicalRow(values={"metrics.clicks": 1})], provenance="live")
    cached = dataset.with_provenance("cached")
    assert cached.provenance == "cached"
    assert dataset.provenance == "live"
    cached.current_rows[0].values["metrics.clicks"] = 5
    assert dataset.current_rows[0].values["metrics.clicks"] == 1


def test_date_helpers():
    assert to_date("2024-03-01T10:00:00Z") == date(2024, 3, 1)
    assert iso_day(datetime(2024, 3, 1, 23, 59)) == "2024-03-01"
    assert iso_day(None) == ""
    with pytest.raises(ValueError):
        to_date("not a date")
