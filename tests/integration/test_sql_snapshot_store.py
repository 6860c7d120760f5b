"""
Integration tests -- SQL snapshot store on a file-backed SQLite database,
plus a full pipeline run persisting through it.
"""
from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import create_engine, text

from src.engine.pipeline import DataResolutionPipeline, ResolutionContext, StaticAuthContext
from src.engine.providers import ProviderResult
from src.engine.snapshots import SqlSnapshotStore
from src.engine.spec import BlockSpec, CanonicalRow, ResolvedDataset, Scope


@pytest.fixture
def store(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'snapshots.db'}")
    yield SqlSnapshotStore(engine)
    engine.dispose()


def _dataset(clicks: float) -> ResolvedDataset:
    return ResolvedDataset(
        current_rows=[CanonicalRow(dimension_value="2024-03-01", values={"metrics.clicks": clicks})],
        comparison_rows=[CanonicalRow(dimension_value="2024-02-01", values={"metrics.clicks": clicks / 2})],
        provenance="live",
    )


def test_ensure_table_idempotent(store):
    store.ensure_table()
    store.ensure_table()


def test_roundtrip_preserves_rows(store):
    store.put("b1", "r1", _dataset(10))
    snapshot = store.get("b1", "r1")
    assert snapshot.dataset.current_rows[0].values["metrics.clicks"] == 10
    assert snapshot.dataset.comparison_rows[0].dimension_value == "2024-02-01"
    assert snapshot.captured_at.tzinfo is not None


def test_overwrite_keeps_single_row(store):
    store.put("b1", "r1", _dataset(1))
    store.put("b1", "r1", _dataset(2))
    with store._engine.connect() as conn:
        count = conn.execute(text("SELECT COUNT(*) FROM block_snapshots")).scalar()
    assert count == 1
    assert store.get("b1", "r1").dataset.current_rows[0].values["metrics.clicks"] == 2


def test_miss_returns_none(store):
    assert store.get("nope", "r1") is None


class _Executor:
    def __init__(self, result):
        self.result = result
        self.calls = 0

    def execute(self, account_id, descriptor, provider):
        self.calls += 1
        return self.result


def test_pipeline_serves_persisted_snapshot_after_outage(store):
    spec = BlockSpec(metrics=["metrics.clicks"], dimension="segments.date")
    scope = Scope(account_id="123", start="2024-03-01", end="2024-03-02")
    context = ResolutionContext(block_id="b1", report_id="r1")
    rows = [{"segments": {"date": "2024-03-01"}, "metrics": {"clicks": "4"}}]

    live = DataResolutionPipeline(_Executor(ProviderResult(success=True, rows=rows)), snapshots=store)
    assert asyncio.run(live.resolve_block(spec, scope, context)).provenance == "live"

    down = DataResolutionPipeline(_Executor(ProviderResult.failed("outage")), snapshots=store)
    cached = asyncio.run(down.resolve_block(spec, scope, context))
    assert cached.provenance == "cached"
    assert cached.current_rows[0].values["metrics.clicks"] == 4.0

    anonymous = ResolutionContext(block_id="b1", report_id="r1", auth=StaticAuthContext(False))
    executor = _Executor(ProviderResult.failed("unused"))
    viewer = DataResolutionPipeline(executor, snapshots=store)
    assert asyncio.run(viewer.resolve_block(spec, scope, anonymous)).provenance == "cached"
    assert executor.calls == 0
