"""
BlockSpec, Scope and the dataset types flowing through the engine.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.core.config import get_settings
from src.core.utils import to_date
from src.engine.errors import InvalidSpec

Visualization = Literal["table", "bar", "line", "pie", "scorecard"]
SortOrder = Literal["ASC", "DESC"]
ComparisonKind = Literal["previous_period", "previous_year"]
Provider = Literal["google_ads", "meta_ads"]
Provenance = Literal["live", "cached", "synthetic"]


class ComparisonSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    kind: ComparisonKind = "previous_period"


class BlockSpec(BaseModel):
    """Declarative description of one analytics block."""

    model_config = ConfigDict(frozen=True)

    title: str = Field("Data Block", description="Block title shown to readers")
    metrics: tuple[str, ...] = Field(..., description="Ordered metric ids, e.g. 'metrics.clicks'")
    dimension: str | None = Field(None, description="Grouping dimension, e.g. 'segments.date'")
    visualization: Visualization = "table"
    limit: int = Field(default_factory=lambda: get_settings().default_block_limit, gt=0, description="Maximum rows to return")
    sort_by: str | None = Field(None, description="Defaults to the first metric")
    sort_order: SortOrder = "DESC"
    comparison: ComparisonSettings = Field(default_factory=ComparisonSettings)
    description: str | None = Field(None, description="Stored narrative text")
    description_hash: str | None = Field(None, description="Config hash at narrative generation time")

    @field_validator("metrics", mode="before")
    @classmethod
    def _dedupe_metrics(cls, value):
        if value is None:
            return ()
        return tuple(dict.fromkeys(value))

    @property
    def order_field(self) -> str | None:
        if self.sort_by:
            return self.sort_by
        return self.metrics[0] if self.metrics else None


class DateWindow(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    @property
    def days(self) -> int:
        """Number of calendar days covered, both ends included."""
        return (self.end - self.start).days + 1

    def dates(self) -> list[date]:
        return [self.start + timedelta(days=i) for i in range(self.days)]

    @classmethod
    def parse(cls, start: date | datetime | str | None, end: date | datetime | str | None) -> "DateWindow":
        """Build a window from loose input; raises ``InvalidSpec`` when malformed."""
        if not start or not end:
            raise InvalidSpec("Date window is incomplete.")
        try:
            start_day, end_day = to_date(start), to_date(end)
        except ValueError as exc:
            raise InvalidSpec(f"Unparseable date window: {exc}") from exc
        if end_day < start_day:
            raise InvalidSpec(f"Date window ends ({end_day}) before it starts ({start_day}).")
        return cls(start=start_day, end=end_day)


class Scope(BaseModel):
    """Where a block pulls its data from."""

    model_config = ConfigDict(frozen=True)

    account_id: str = ""
    campaign_ids: tuple[str, ...] = ()
    start: date | str | None = None
    end: date | str | None = None
    provider: Provider = "google_ads"

    @field_validator("campaign_ids", mode="before")
    @classmethod
    def _dedupe_campaigns(cls, value):
        if value is None:
            return ()
        return tuple(dict.fromkeys(str(v) for v in value))

    @property
    def has_live_source(self) -> bool:
        return bool(self.account_id and self.account_id.strip())

    def window(self) -> DateWindow:
        return DateWindow.parse(self.start, self.end)

    def with_window(self, window: DateWindow) -> "Scope":
        return self.model_copy(update={"start": window.start, "end": window.end})


class CanonicalRow(BaseModel):
    dimension_value: str | None = None
    values: dict[str, float] = Field(default_factory=dict)


class ResolvedDataset(BaseModel):
    current_rows: list[CanonicalRow] = Field(default_factory=list)
    comparison_rows: list[CanonicalRow] = Field(default_factory=list)
    provenance: Provenance
    resolved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def with_provenance(self, provenance: Provenance) -> "ResolvedDataset":
        return self.model_copy(update={"provenance": provenance}, deep=True)
