"""
Loads, parses, and caches the metric catalog YAML into strongly-typed objects.

The catalog is the single source of truth for:
  - raw metrics       (summed across rows)
  - computed metrics  (derived from summed raw dependencies)
  - dimensions        (labels, Meta Ads field mapping, demo values)
  - resource inference (dimension namespace -> provider resource)

Computed metrics resolve in exactly one level: their dependencies are raw.
Aggregating a computed metric always sums the dependencies across rows first
and applies the formula to those sums.  Per-row ratios are never averaged.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from functools import lru_cache
from typing import Any, Callable, Iterable, Mapping

import yaml

from src.core.logging import get_logger

logger = get_logger(__name__)

_CATALOG_PATH = Path(__file__).resolve().parents[2] / "semantic_layer" / "metric_catalog.yml"

RAW = "raw"
COMPUTED = "computed"

# Visualizations that reduce all rows of a period to one value per metric.
AGGREGATING_VISUALIZATIONS = frozenset({"scorecard"})


class CatalogError(ValueError):
    """The catalog YAML is inconsistent."""


# ── Typed domain objects ─────────────────────────────────

@dataclass(frozen=True)
class MetricDefinition:
    id: str
    label: str
    kind: str  # raw | computed
    unit: str = "count"  # count | money | micros | percent | ratio
    inverse: bool = False  # lower is better (cost-type metrics)
    dependencies: tuple[str, ...] = ()
    compute: Callable[[Mapping[str, float]], float] | None = field(default=None, compare=False, repr=False)

    @property
    def is_computed(self) -> bool:
        return self.kind == COMPUTED


@dataclass(frozen=True)
class DimensionDefinition:
    id: str
    label: str
    meta_field: str | None = None
    meta_level: str = "campaign"
    meta_breakdowns: tuple[str, ...] = ()
    meta_time_increment: int | None = None
    demo_values: tuple[str, ...] = ()

    @property
    def namespace(self) -> str:
        return self.id.split(".", 1)[0]


def _ratio(numerator: str, denominator: str, scale: float = 1.0) -> Callable[[Mapping[str, float]], float]:
    def _fn(sums: Mapping[str, float]) -> float:
        denom = float(sums.get(denominator, 0.0) or 0.0)
        if denom == 0:
            return 0.0
        return float(sums.get(numerator, 0.0) or 0.0) / denom * scale
    return _fn


_FORMULAS: dict[str, Callable[..., Callable[[Mapping[str, float]], float]]] = {
    "ratio": _ratio,
}


def _as_number(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


@dataclass
class MetricCatalog:
    """Arena-style lookup table: metric id -> definition."""

    version: int
    metrics: dict[str, MetricDefinition]
    dimensions: dict[str, DimensionDefinition]
    resources: dict[str, str]
    default_resource: str = "campaign"

    # ── Look-ups ─────────────────────────────────────

    def metric(self, metric_id: str) -> MetricDefinition | None:
        return self.metrics.get(metric_id)

    def dimension(self, dimension_id: str | None) -> DimensionDefinition | None:
        if not dimension_id:
            return None
        return self.dimensions.get(dimension_id)

    def is_computed(self, metric_id: str) -> bool:
        definition = self.metrics.get(metric_id)
        return definition is not None and definition.is_computed

    def get_metric_ids(self) -> list[str]:
        return list(self.metrics.keys())

    def get_dimension_ids(self) -> list[str]:
        return list(self.dimensions.keys())

    def resource_for(self, dimension_id: str | None) -> str:
        """Pick the provider resource from the dimension's namespace prefix."""
        if not dimension_id:
            return self.default_resource
        namespace = dimension_id.split(".", 1)[0]
        return self.resources.get(namespace, self.default_resource)

    # ── Fetch planning ───────────────────────────────

    def is_aggregating(self, visualization: str) -> bool:
        """True when *visualization* reduces all rows of a period to one value per metric."""
        return visualization in AGGREGATING_VISUALIZATIONS

    def resolve_for_fetch(self, metrics: Iterable[str], visualization: str) -> tuple[str, ...]:
        """Return the metric ids to actually request from the provider.

        Non-aggregating visualizations fetch the metrics as-is.  Aggregating
        ones fetch the raw dependencies of every computed metric instead, so
        totals can be rebuilt from sums.
        """
        metrics = list(metrics)
        if not self.is_aggregating(visualization):
            return tuple(dict.fromkeys(metrics))

        resolved: list[str] = []
        for metric_id in metrics:
            definition = self.metrics.get(metric_id)
            if definition is not None and definition.is_computed:
                resolved.extend(definition.dependencies)
            else:
                resolved.append(metric_id)
        return tuple(dict.fromkeys(resolved))

    # ── Aggregation ──────────────────────────────────

    def aggregate(self, metric_id: str, rows: Iterable[Any]) -> float:
        """Total *metric_id* over *rows*.

        *rows* are ``CanonicalRow`` objects or plain ``{metric_id: value}``
        mappings.  Raw metrics are summed; computed metrics sum each
        dependency and then apply the formula to the sums.
        """
        rows = list(rows)
        definition = self.metrics.get(metric_id)
        if definition is None or not definition.is_computed:
            return _sum_column(rows, metric_id)

        sums = {dep: _sum_column(rows, dep) for dep in definition.dependencies}
        return definition.compute(sums) if definition.compute else 0.0

    def aggregate_all(self, metrics: Iterable[str], rows: Iterable[Any]) -> dict[str, float]:
        rows = list(rows)
        return {metric_id: self.aggregate(metric_id, rows) for metric_id in metrics}

    def compute_row(self, metric_id: str, values: Mapping[str, float]) -> float:
        """Evaluate a computed metric for a single row of raw values."""
        definition = self.metrics.get(metric_id)
        if definition is None or not definition.is_computed or definition.compute is None:
            return _as_number(values.get(metric_id))
        return definition.compute({dep: _as_number(values.get(dep)) for dep in definition.dependencies})

    # ── API helpers ──────────────────────────────────

    def get_metrics_list(self) -> list[dict[str, Any]]:
        return [
            {
                "id": m.id,
                "label": m.label,
                "kind": m.kind,
                "unit": m.unit,
                "inverse": m.inverse,
                "dependencies": list(m.dependencies),
            }
            for m in self.metrics.values()
        ]

    def get_dimensions_list(self) -> list[dict[str, Any]]:
        return [
            {"id": d.id, "label": d.label, "resource": self.resource_for(d.id)}
            for d in self.dimensions.values()
        ]


def _row_values(row: Any) -> Mapping[str, Any]:
    values = getattr(row, "values", None)
    if isinstance(values, Mapping):
        return values
    return row


def _sum_column(rows: list[Any], metric_id: str) -> float:
    return sum(_as_number(_row_values(row).get(metric_id)) for row in rows)


# ── Parsing ──────────────────────────────────────────────

def _parse_metric(raw: dict[str, Any]) -> MetricDefinition:
    kind = raw.get("kind", RAW)
    if kind not in (RAW, COMPUTED):
        raise CatalogError(f"Metric '{raw['id']}' has unknown kind '{kind}'")

    dependencies: tuple[str, ...] = ()
    compute = None
    if kind == COMPUTED:
        formula = dict(raw.get("formula") or {})
        op = formula.pop("op", None)
        builder = _FORMULAS.get(op)
        if builder is None:
            raise CatalogError(f"Computed metric '{raw['id']}' has unknown formula op '{op}'")
        compute = builder(**formula)
        dependencies = tuple(dict.fromkeys([formula["numerator"], formula["denominator"]]))

    return MetricDefinition(
        id=raw["id"],
        label=raw.get("label", raw["id"]),
        kind=kind,
        unit=raw.get("unit", "count"),
        inverse=bool(raw.get("inverse", False)),
        dependencies=dependencies,
        compute=compute,
    )


def _parse_dimension(raw: dict[str, Any]) -> DimensionDefinition:
    return DimensionDefinition(
        id=raw["id"],
        label=raw.get("label", raw["id"]),
        meta_field=raw.get("meta_field"),
        meta_level=raw.get("meta_level", "campaign"),
        meta_breakdowns=tuple(raw.get("meta_breakdowns") or ()),
        meta_time_increment=raw.get("meta_time_increment"),
        demo_values=tuple(raw.get("demo_values") or ()),
    )


def _check_dependencies(metrics: dict[str, MetricDefinition]) -> None:
    for m in metrics.values():
        for dep in m.dependencies:
            target = metrics.get(dep)
            if target is None:
                raise CatalogError(f"Computed metric '{m.id}' depends on unknown metric '{dep}'")
            if target.is_computed:
                raise CatalogError(
                    f"Computed metric '{m.id}' depends on computed metric '{dep}'; "
                    "dependencies must be raw"
                )


def parse_catalog(raw_yaml: dict[str, Any]) -> MetricCatalog:
    metrics = {m["id"]: _parse_metric(m) for m in raw_yaml.get("metrics", [])}
    _check_dependencies(metrics)
    dimensions = {d["id"]: _parse_dimension(d) for d in raw_yaml.get("dimensions", [])}
    return MetricCatalog(
        version=raw_yaml.get("version", 1),
        metrics=metrics,
        dimensions=dimensions,
        resources=dict(raw_yaml.get("resources") or {}),
        default_resource=raw_yaml.get("default_resource", "campaign"),
    )


# ── Public API ───────────────────────────────────────────

@lru_cache
def load_metric_catalog() -> MetricCatalog:
    """Load and cache the metric catalog from YAML."""
    with open(_CATALOG_PATH) as f:
        raw = yaml.safe_load(f)
    catalog = parse_catalog(raw)
    logger.debug("Metric catalog loaded: %d metrics, %d dimensions",
                 len(catalog.metrics), len(catalog.dimensions))
    return catalog


def is_aggregating(visualization: str) -> bool:
    return load_metric_catalog().is_aggregating(visualization)


def resolve_for_fetch(metrics: Iterable[str], visualization: str) -> tuple[str, ...]:
    return load_metric_catalog().resolve_for_fetch(metrics, visualization)


def aggregate(metric_id: str, rows: Iterable[Any]) -> float:
    return load_metric_catalog().aggregate(metric_id, rows)
