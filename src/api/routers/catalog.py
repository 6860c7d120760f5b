"""
GET /metrics, GET /metrics/detail, GET /dimensions -- catalog endpoints.
"""
from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from src.semantic.metric_catalog import load_metric_catalog

router = APIRouter()


class MetricItem(BaseModel):
    id: str
    label: str
    kind: str
    unit: str
    inverse: bool
    dependencies: list[str]


class DimensionItem(BaseModel):
    id: str
    label: str
    resource: str


@router.get("/metrics")
def list_metrics() -> dict:
    """Return all metric ids (raw and computed)."""
    return {"metrics": load_metric_catalog().get_metric_ids()}


@router.get("/metrics/detail", response_model=list[MetricItem])
def list_metrics_detail() -> list[MetricItem]:
    """Return metric metadata, including computed-metric dependencies."""
    return [MetricItem(**m) for m in load_metric_catalog().get_metrics_list()]


@router.get("/dimensions")
def list_dimensions() -> dict:
    return {"dimensions": load_metric_catalog().get_dimension_ids()}


@router.get("/dimensions/detail", response_model=list[DimensionItem])
def list_dimensions_detail() -> list[DimensionItem]:
    """Return dimensions with the provider resource they query."""
    return [DimensionItem(**d) for d in load_metric_catalog().get_dimensions_list()]
