"""
Query compiler -- turns a BlockSpec + Scope into a provider-neutral
QueryDescriptor.

The descriptor is what provider executors consume.  For Google Ads it
renders to a GAQL string via ``QueryDescriptor.to_gaql()``; Meta Ads
executors read the projection / window and ignore the resource.
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from src.engine.spec import BlockSpec, DateWindow, Scope, SortOrder
from src.semantic.metric_catalog import load_metric_catalog, MetricCatalog
from src.semantic.validator import ensure_valid
from src.core.logging import get_logger

logger = get_logger(__name__)


class QueryFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    window: DateWindow
    campaign_ids: tuple[str, ...] | None = None  # None = no restriction


class QueryOrder(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    direction: SortOrder = "DESC"


class QueryDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    projection: tuple[str, ...]
    resource: str
    dimension: str | None = None
    filter: QueryFilter
    order: QueryOrder
    limit: int

    def to_gaql(self) -> str:
        """Render as a single-line Google Ads Query Language statement."""
        where_parts = [
            f"segments.date BETWEEN '{self.filter.window.start.isoformat()}' "
            f"AND '{self.filter.window.end.isoformat()}'"
        ]
        if self.filter.campaign_ids:
            where_parts.append(f"campaign.id IN ({', '.join(self.filter.campaign_ids)})")

        return " ".join([
            f"SELECT {', '.join(self.projection)}",
            f"FROM {self.resource}",
            f"WHERE {' AND '.join(where_parts)}",
            f"ORDER BY {self.order.field} {self.order.direction}",
            f"LIMIT {self.limit}",
        ])


def compile_block(spec: BlockSpec, scope: Scope, catalog: MetricCatalog | None = None) -> QueryDescriptor:
    """Build a QueryDescriptor from a validated BlockSpec.

    Raises ``InvalidSpec`` when the spec has no metrics or the scope's date
    window is malformed.
    """
    if catalog is None:
        catalog = load_metric_catalog()

    ensure_valid(spec, scope)
    window = scope.window()

    # ── Projection ───────────────────────────────────
    fetch_metrics = catalog.resolve_for_fetch(spec.metrics, spec.visualization)
    order_field = spec.order_field
    projection = tuple(
        f for f in dict.fromkeys([spec.dimension, *fetch_metrics, order_field]) if f
    )

    # ── Filter ───────────────────────────────────────
    # An empty IN () would exclude everything; omit the restriction instead.
    campaign_ids = tuple(scope.campaign_ids) or None

    descriptor = QueryDescriptor(
        projection=projection,
        resource=catalog.resource_for(spec.dimension),
        dimension=spec.dimension,
        filter=QueryFilter(window=window, campaign_ids=campaign_ids),
        order=QueryOrder(field=order_field, direction=spec.sort_order),
        limit=spec.limit,
    )
    logger.debug("Compiled block '%s': %s", spec.title, descriptor.to_gaql())
    return descriptor
