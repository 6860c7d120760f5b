"""
Row normalizer -- maps provider response rows onto flat CanonicalRows.

Google Ads rows are nested by namespace::

    {"segments": {"date": "2024-03-01"}, "metrics": {"clicks": "12"}}

Meta Ads insight rows are flat and use their own field names::

    {"date_start": "2024-03-01", "clicks": "12", "spend": "3.40"}

Both collapse to ``CanonicalRow(dimension_value=..., values={metric_id: float})``.
No aggregation happens here.
"""
from __future__ import annotations

from typing import Any, Iterable

from src.engine.spec import BlockSpec, CanonicalRow
from src.semantic.metric_catalog import load_metric_catalog, MetricCatalog

_MISSING = object()


def _walk(row: Any, path: str) -> Any:
    """Follow a dotted path through nested dicts; ``_MISSING`` when absent."""
    node = row
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return _MISSING
        node = node[part]
    return node


def _to_number(value: Any) -> float:
    if value is _MISSING or value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_label(value: Any) -> str | None:
    if value is _MISSING or value is None:
        return None
    return str(value)


def _metric_fields(spec: BlockSpec, fetched: Iterable[str] | None) -> tuple[str, ...]:
    fields = list(spec.metrics)
    if fetched:
        fields.extend(fetched)
    return tuple(dict.fromkeys(fields))


def _fill_computed(
    values: dict[str, float],
    spec: BlockSpec,
    fetched: Iterable[str] | None,
    catalog: MetricCatalog,
) -> dict[str, float]:
    """Rebuild computed metrics whose raw dependencies were all fetched."""
    if fetched is None:
        return values
    fetched = set(fetched)
    for metric_id in spec.metrics:
        definition = catalog.metric(metric_id)
        if definition is None or not definition.is_computed:
            continue
        if all(dep in fetched for dep in definition.dependencies):
            values[metric_id] = catalog.compute_row(metric_id, values)
    return values


def normalize(
    provider_rows: Iterable[dict[str, Any]],
    spec: BlockSpec,
    fetched_metrics: Iterable[str] | None = None,
    catalog: MetricCatalog | None = None,
) -> list[CanonicalRow]:
    """Flatten nested (Google Ads style) rows.

    *fetched_metrics* adds the ids actually requested from the provider
    (raw dependencies of computed metrics) so totals can be rebuilt later.
    """
    if catalog is None:
        catalog = load_metric_catalog()
    if provider_rows is None:
        raise ValueError("Provider returned no row list")

    metric_ids = _metric_fields(spec, fetched_metrics)
    canonical: list[CanonicalRow] = []
    for row in provider_rows:
        if not isinstance(row, dict):
            raise ValueError(f"Malformed provider row: {row!r}")
        dimension_value = _to_label(_walk(row, spec.dimension)) if spec.dimension else None
        values = {m: _to_number(_walk(row, m)) for m in metric_ids}
        values = _fill_computed(values, spec, fetched_metrics, catalog)
        canonical.append(CanonicalRow(dimension_value=dimension_value, values=values))
    return canonical


def normalize_meta(
    provider_rows: Iterable[dict[str, Any]],
    spec: BlockSpec,
    fetched_metrics: Iterable[str] | None = None,
    catalog: MetricCatalog | None = None,
) -> list[CanonicalRow]:
    """Flatten Meta Ads insight rows (flat field names, no namespace)."""
    if catalog is None:
        catalog = load_metric_catalog()
    if provider_rows is None:
        raise ValueError("Provider returned no row list")

    dim_field = None
    if spec.dimension:
        definition = catalog.dimension(spec.dimension)
        dim_field = definition.meta_field if definition and definition.meta_field else spec.dimension

    metric_ids = _metric_fields(spec, fetched_metrics)
    canonical: list[CanonicalRow] = []
    for row in provider_rows:
        if not isinstance(row, dict):
            raise ValueError(f"Malformed provider row: {row!r}")
        dimension_value = None
        if dim_field:
            raw = row.get(dim_field, _MISSING)
            # campaign names arrive camel-cased from some endpoints
            if raw is _MISSING and dim_field == "campaign_name":
                raw = row.get("campaignName", _MISSING)
            dimension_value = _to_label(raw)
        values = {m: _to_number(row.get(m.split(".", 1)[-1], _MISSING)) for m in metric_ids}
        values = _fill_computed(values, spec, fetched_metrics, catalog)
        canonical.append(CanonicalRow(dimension_value=dimension_value, values=values))
    return canonical


def meta_request_params(dimension: str | None, catalog: MetricCatalog | None = None) -> dict[str, Any]:
    """Meta insights level / time increment / breakdowns for a dimension."""
    if catalog is None:
        catalog = load_metric_catalog()
    definition = catalog.dimension(dimension)
    if definition is None:
        return {"level": "campaign", "time_increment": None, "breakdowns": None}
    return {
        "level": definition.meta_level,
        "time_increment": definition.meta_time_increment,
        "breakdowns": list(definition.meta_breakdowns) or None,
    }


def normalize_for_provider(
    provider: str,
    provider_rows: Iterable[dict[str, Any]],
    spec: BlockSpec,
    fetched_metrics: Iterable[str] | None = None,
    catalog: MetricCatalog | None = None,
) -> list[CanonicalRow]:
    if provider == "meta_ads":
        return normalize_meta(provider_rows, spec, fetched_metrics, catalog)
    return normalize(provider_rows, spec, fetched_metrics, catalog)
