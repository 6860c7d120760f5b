"""
Synthetic dataset generator -- demo data shaped like the requested block.

Used when no live source is reachable and no snapshot exists.  Shape rules:
  - date dimension        -> one row per day of the window (inclusive)
  - catalog dimension     -> one row per demo value of that dimension
  - unknown dimension     -> a handful of fake entity names
  - no dimension          -> a single aggregate row

Raw values are drawn per unit; computed metrics are then derived from the
row's synthetic dependencies so ratios stay consistent with their inputs.
"""
from __future__ import annotations

import math
import random
from datetime import date, timedelta

from faker import Faker

from src.engine.spec import BlockSpec, CanonicalRow, DateWindow, ResolvedDataset
from src.semantic.metric_catalog import load_metric_catalog, MetricCatalog
from src.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_WINDOW_DAYS = 30
UNKNOWN_DIMENSION_ROWS = 5

# Plausible magnitudes per unit of a raw metric (min, max).
_UNIT_RANGES: dict[str, tuple[float, float]] = {
    "count": (500, 1500),
    "money": (25, 75),
    "micros": (25_000_000, 75_000_000),
    "percent": (0.5, 5.5),
    "ratio": (1, 4),
}

# Typical raw volumes, so computed ratios land in realistic ranges.
_RAW_SCALE: dict[str, float] = {
    "metrics.impressions": 20.0,
    "metrics.reach": 12.0,
    "metrics.clicks": 1.0,
    "metrics.conversions": 0.05,
    "metrics.purchases": 0.03,
    "metrics.leads": 0.04,
    "metrics.conversions_value": 3.0,
}


def _default_window() -> DateWindow:
    end = date.today()
    return DateWindow(start=end - timedelta(days=DEFAULT_WINDOW_DAYS - 1), end=end)


def _dimension_values(
    spec: BlockSpec,
    window: DateWindow | None,
    catalog: MetricCatalog,
    fake: Faker,
) -> list[str | None]:
    if not spec.dimension:
        return [None]
    if spec.dimension == "segments.date":
        return [d.isoformat() for d in (window or _default_window()).dates()]
    definition = catalog.dimension(spec.dimension)
    if definition and definition.demo_values:
        return list(definition.demo_values)
    return [fake.unique.catch_phrase() for _ in range(UNKNOWN_DIMENSION_ROWS)]


class SyntheticGenerator:
    """Seedable generator; one instance per dataset keeps rows reproducible."""

    def __init__(self, seed: int | None = None, catalog: MetricCatalog | None = None):
        self._catalog = catalog or load_metric_catalog()
        self._rng = random.Random(seed)
        self._fake = Faker()
        if seed is not None:
            self._fake.seed_instance(seed)

    def _raw_value(self, metric_id: str, base: float) -> float:
        definition = self._catalog.metric(metric_id)
        unit = definition.unit if definition else "count"
        low, high = _UNIT_RANGES.get(unit, _UNIT_RANGES["count"])
        if unit == "count":
            scale = _RAW_SCALE.get(metric_id, 1.0)
            return float(max(0, round(base * scale)))
        if metric_id == "metrics.conversions_value":
            return round(base * _RAW_SCALE[metric_id], 2)
        value = self._rng.uniform(low, high) * (base / 1000)
        return round(value, 2) if unit != "micros" else float(round(value))

    def _row(self, spec: BlockSpec, dimension_value: str | None, base: float) -> CanonicalRow:
        catalog = self._catalog
        raw_ids: list[str] = []
        for metric_id in spec.metrics:
            definition = catalog.metric(metric_id)
            if definition is not None and definition.is_computed:
                raw_ids.extend(definition.dependencies)
            else:
                raw_ids.append(metric_id)

        values: dict[str, float] = {}
        for metric_id in dict.fromkeys(raw_ids):
            values[metric_id] = self._raw_value(metric_id, base * self._rng.uniform(0.9, 1.1))
        for metric_id in spec.metrics:
            if catalog.is_computed(metric_id):
                values[metric_id] = round(catalog.compute_row(metric_id, values), 4)
        return CanonicalRow(dimension_value=dimension_value, values=values)

    def rows(self, spec: BlockSpec, window: DateWindow | None) -> list[CanonicalRow]:
        dim_values = _dimension_values(spec, window, self._catalog, self._fake)
        is_series = spec.dimension == "segments.date"

        rows: list[CanonicalRow] = []
        last = 1000.0
        for i, value in enumerate(dim_values):
            if is_series:
                # random walk with a weekly-ish wave
                last = max(100.0, last + (self._rng.random() - 0.5) * 200)
                base = max(50.0, last + math.sin(i / 3) * 200)
            else:
                base = self._rng.random() * 1000 + 500
            rows.append(self._row(spec, value, base))
        return rows

    def prior_rows(self, spec: BlockSpec, current: list[CanonicalRow]) -> list[CanonicalRow]:
        """Comparison rows: each current row scaled by 0.8-1.2."""
        prior: list[CanonicalRow] = []
        for row in current:
            factor = 0.8 + self._rng.random() * 0.4
            values = {
                k: (round(v * factor) if float(v).is_integer() else round(v * factor, 2))
                for k, v in row.values.items()
                if not self._catalog.is_computed(k)
            }
            for metric_id in spec.metrics:
                if self._catalog.is_computed(metric_id):
                    values[metric_id] = round(self._catalog.compute_row(metric_id, values), 4)
            prior.append(CanonicalRow(dimension_value=row.dimension_value, values=values))
        return prior


def generate_synthetic(
    spec: BlockSpec,
    window: DateWindow | None,
    seed: int | None = None,
    catalog: MetricCatalog | None = None,
) -> ResolvedDataset:
    """Build a synthetic ResolvedDataset for *spec* over *window*.

    *window* may be ``None`` (missing / malformed scope); a date dimension
    then covers the last 30 days.
    """
    generator = SyntheticGenerator(seed=seed, catalog=catalog)
    current = generator.rows(spec, window)
    comparison = generator.prior_rows(spec, current) if spec.comparison.enabled else []
    logger.info("Synthetic dataset for '%s': %d rows (comparison=%d)",
                spec.title, len(current), len(comparison))
    return ResolvedDataset(current_rows=current, comparison_rows=comparison, provenance="synthetic")
