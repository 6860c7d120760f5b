"""
Narrative generation for a single resolved block.

Works in both ``mock`` mode (deterministic template, no API key needed) and
LLM mode (openai / anthropic via ``call_llm``).  Totals are rebuilt through
the metric catalog so ratio metrics are never averaged across rows.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from src.engine.comparison import delta_pct
from src.engine.errors import NarrativeGenerationFailed
from src.engine.spec import BlockSpec, CanonicalRow, DateWindow, ResolvedDataset
from src.narrative.llm_client import MOCK, call_llm, resolve_provider
from src.semantic.metric_catalog import load_metric_catalog, MetricCatalog
from src.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class NarrativeRequest:
    block_id: str
    spec: BlockSpec
    dataset: ResolvedDataset
    period: DateWindow


@dataclass
class NarrativeResult:
    block_id: str
    text: str
    provider: str
    totals: dict[str, float] = field(default_factory=dict)


# ── Value formatting ────────────────────────────────────


def _compact(value: float) -> str:
    if abs(value) >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if abs(value) >= 1_000:
        return f"{value / 1_000:.1f}K"
    return f"{value:.0f}"


def format_value(value: float, unit: str) -> str:
    """Human-readable value for a metric unit."""
    if unit == "micros":
        return f"{value / 1_000_000:,.2f}"
    if unit == "money":
        return f"{value:,.2f}"
    if unit == "percent":
        return f"{value:.2f}%"
    if unit == "ratio":
        return f"{value:.2f}x"
    return _compact(value)


# ── Totals ──────────────────────────────────────────────


def _has_column(rows: list[CanonicalRow], metric_id: str) -> bool:
    return any(metric_id in row.values for row in rows)


def block_totals(
    metrics: tuple[str, ...] | list[str],
    rows: list[CanonicalRow],
    catalog: MetricCatalog,
) -> dict[str, float]:
    """Totals for *metrics* over *rows*.

    Computed metrics are only totalled when their raw dependencies are in
    the rows; otherwise they are left out.
    """
    totals: dict[str, float] = {}
    for metric_id in metrics:
        definition = catalog.metric(metric_id)
        if definition is not None and definition.is_computed:
            if not all(_has_column(rows, dep) for dep in definition.dependencies):
                continue
        elif not _has_column(rows, metric_id):
            continue
        totals[metric_id] = catalog.aggregate(metric_id, rows)
    return totals


# ── Service ─────────────────────────────────────────────


class NarrativeService:
    def __init__(self, provider: str | None = None, catalog: MetricCatalog | None = None):
        self._provider = resolve_provider(provider)
        self._catalog = catalog or load_metric_catalog()

    @property
    def provider(self) -> str:
        return self._provider

    def _label(self, metric_id: str) -> str:
        definition = self._catalog.metric(metric_id)
        return definition.label if definition else metric_id.split(".", 1)[-1]

    def _unit(self, metric_id: str) -> str:
        definition = self._catalog.metric(metric_id)
        return definition.unit if definition else "count"

    def build_context(self, request: NarrativeRequest) -> dict[str, Any]:
        """Structured facts handed to the prompt (and to the mock template)."""
        spec, dataset = request.spec, request.dataset
        current = block_totals(spec.metrics, dataset.current_rows, self._catalog)
        prior = None
        if spec.comparison.enabled and dataset.comparison_rows:
            prior = block_totals(spec.metrics, dataset.comparison_rows, self._catalog)

        metrics: list[dict[str, Any]] = []
        for metric_id, value in current.items():
            unit = self._unit(metric_id)
            entry: dict[str, Any] = {
                "id": metric_id,
                "name": self._label(metric_id),
                "current": format_value(value, unit),
                "raw": value,
            }
            if prior is not None and metric_id in prior:
                entry["previous"] = format_value(prior[metric_id], unit)
                entry["change_pct"] = round(delta_pct(value, prior[metric_id]), 1)
            metrics.append(entry)

        return {
            "title": spec.title,
            "visualization": spec.visualization,
            "period": f"{request.period.start.isoformat()} to {request.period.end.isoformat()}",
            "dimension": spec.dimension or "aggregate",
            "data_points": len(dataset.current_rows),
            "metrics": metrics,
            "comparison": spec.comparison.kind.replace("_", " ") if prior is not None else None,
        }

    def build_prompt(self, context: dict[str, Any]) -> str:
        return (
            "Write a concise narrative analysis (2-3 sentences) of the data block below "
            "for a client-facing advertising report. Use the figures as given, mention "
            "changes above 10% when a comparison is present, and do not invent numbers.\n\n"
            f"DATA:\n{json.dumps(context, indent=2, default=str)}\n"
        )

    def _template(self, context: dict[str, Any]) -> str:
        parts: list[str] = []
        for entry in context["metrics"][:3]:
            sentence = f"{entry['name']} reached {entry['current']}"
            if "change_pct" in entry:
                sentence += f" ({entry['change_pct']:+.1f}% vs {context['comparison']})"
            parts.append(sentence)

        if not parts:
            return f"{context['title']}: no data available for {context['period']}."
        text = f"{context['title']} ({context['period']}): " + "; ".join(parts) + "."
        if context["dimension"] != "aggregate":
            text += f" Broken down by {context['dimension']} across {context['data_points']} rows."
        return text

    def generate(self, request: NarrativeRequest) -> NarrativeResult:
        """Produce narrative text; raises ``NarrativeGenerationFailed``."""
        context = self.build_context(request)
        totals = {m["id"]: m["raw"] for m in context["metrics"]}

        if self._provider == MOCK:
            text = self._template(context)
        else:
            try:
                text = call_llm(self.build_prompt(context), provider=self._provider)
            except Exception as exc:
                logger.warning("Narrative generation failed for block=%s: %s", request.block_id, exc)
                raise NarrativeGenerationFailed(str(exc), block_id=request.block_id) from exc

        text = (text or "").strip()
        if not text:
            raise NarrativeGenerationFailed("LLM returned an empty narrative", block_id=request.block_id)

        logger.info("Narrative generated block=%s provider=%s chars=%d", request.block_id, self._provider, len(text))
        return NarrativeResult(block_id=request.block_id, text=text, provider=self._provider, totals=totals)
