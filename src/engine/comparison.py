"""
Comparison windows and current-vs-prior joins.

previous_period  -- same number of days, ending the day before the current start
previous_year    -- both ends shifted back one calendar year (Feb 29 -> Feb 28)

A prior value of 0 means "no baseline": the delta is reported as 0 rather
than +inf / NaN, and the trend is neutral.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Iterable

from src.engine.spec import CanonicalRow, ComparisonKind, DateWindow
from src.semantic.metric_catalog import load_metric_catalog, MetricCatalog

TREND_UP = "up"
TREND_DOWN = "down"
TREND_NEUTRAL = "neutral"


# ── Windows ─────────────────────────────────────────────


def _shift_year(day: date, years: int = -1) -> date:
    try:
        return day.replace(year=day.year + years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return day.replace(year=day.year + years, day=28)


def previous_window(window: DateWindow, kind: ComparisonKind) -> DateWindow:
    if kind == "previous_year":
        return DateWindow(start=_shift_year(window.start), end=_shift_year(window.end))
    if kind == "previous_period":
        duration = window.end - window.start
        prev_end = window.start - timedelta(days=1)
        return DateWindow(start=prev_end - duration, end=prev_end)
    raise ValueError(f"Unknown comparison kind '{kind}'")


# ── Deltas ──────────────────────────────────────────────


def delta_pct(current: float, prior: float) -> float:
    if not prior:
        return 0.0
    return (current - prior) / prior * 100


def trend(current: float, prior: float, inverse: bool = False) -> str:
    """Direction of change, with cost-type (inverse) metrics flipped."""
    change = delta_pct(current, prior)
    if round(change, 1) == 0:
        return TREND_NEUTRAL
    improving = change < 0 if inverse else change > 0
    return TREND_UP if improving else TREND_DOWN


@dataclass
class MetricComparison:
    current: float
    prior: float
    delta_pct: float

    def to_dict(self) -> dict[str, float]:
        return {"current": self.current, "prior": self.prior, "delta_pct": self.delta_pct}


@dataclass
class JoinedRow:
    dimension_value: str | None
    metrics: dict[str, MetricComparison] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dimension_value": self.dimension_value,
            "metrics": {k: v.to_dict() for k, v in self.metrics.items()},
        }


def join(
    current_rows: Iterable[CanonicalRow],
    comparison_rows: Iterable[CanonicalRow],
    metrics: Iterable[str],
) -> list[JoinedRow]:
    """Pair each current row with the prior row of the same dimension value."""
    metrics = list(metrics)
    prior_by_key: dict[str | None, CanonicalRow] = {}
    for row in comparison_rows:
        prior_by_key.setdefault(row.dimension_value, row)

    joined: list[JoinedRow] = []
    for row in current_rows:
        prior_row = prior_by_key.get(row.dimension_value)
        entry = JoinedRow(dimension_value=row.dimension_value)
        for metric_id in metrics:
            current = float(row.values.get(metric_id, 0.0))
            prior = float(prior_row.values.get(metric_id, 0.0)) if prior_row else 0.0
            entry.metrics[metric_id] = MetricComparison(current, prior, delta_pct(current, prior))
        joined.append(entry)
    return joined


@dataclass
class TotalComparison:
    metric_id: str
    current: float
    prior: float | None
    delta_pct: float
    trend: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric_id": self.metric_id,
            "current": self.current,
            "prior": self.prior,
            "delta_pct": self.delta_pct,
            "trend": self.trend,
        }


def compare_totals(
    metrics: Iterable[str],
    current_rows: list[CanonicalRow],
    comparison_rows: list[CanonicalRow] | None,
    catalog: MetricCatalog | None = None,
) -> list[TotalComparison]:
    """Scorecard-level totals, computed metrics rebuilt from summed dependencies."""
    if catalog is None:
        catalog = load_metric_catalog()

    results: list[TotalComparison] = []
    for metric_id in metrics:
        definition = catalog.metric(metric_id)
        inverse = definition.inverse if definition else False
        current = catalog.aggregate(metric_id, current_rows)
        if comparison_rows:
            prior = catalog.aggregate(metric_id, comparison_rows)
            results.append(TotalComparison(
                metric_id, current, prior, delta_pct(current, prior), trend(current, prior, inverse),
            ))
        else:
            results.append(TotalComparison(metric_id, current, None, 0.0, TREND_NEUTRAL))
    return results
