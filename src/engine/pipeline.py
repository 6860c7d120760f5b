"""
Data resolution pipeline -- resolves a BlockSpec into a ResolvedDataset.

Tiers, evaluated in order:
  1. anonymous caller      -> snapshot if present, else synthetic (never live)
  2. account configured    -> live fetch (current + comparison concurrently)
  3. live fetch failed     -> snapshot, tagged ``cached``
  4. anything else         -> synthetic

Every result carries an honest ``provenance``.  Only ``InvalidSpec`` (no
metrics, malformed field ids) escapes; provider failures and malformed date
windows degrade through the tiers instead.
"""
from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from src.engine.comparison import previous_window
from src.engine.compiler import QueryDescriptor, compile_block
from src.engine.errors import InvalidSpec, ProviderUnavailable
from src.engine.normalizer import normalize_for_provider
from src.engine.providers import HttpProviderExecutor, ProviderQueryExecutor
from src.engine.snapshots import SnapshotStore, get_snapshot_store
from src.engine.spec import BlockSpec, CanonicalRow, DateWindow, ResolvedDataset, Scope
from src.engine.synthetic import generate_synthetic
from src.semantic.metric_catalog import load_metric_catalog, MetricCatalog
from src.semantic.validator import ensure_valid
from src.core.config import get_settings
from src.core.logging import get_logger
from src.core.utils import timer

logger = get_logger(__name__)


# ── Caller context ──────────────────────────────────────


class AuthContext(Protocol):
    def is_authenticated(self) -> bool: ...


@dataclass(frozen=True)
class StaticAuthContext:
    authenticated: bool = True

    def is_authenticated(self) -> bool:
        return self.authenticated


@dataclass(frozen=True)
class ResolutionContext:
    block_id: str
    report_id: str
    auth: AuthContext = StaticAuthContext()


# ── Pipeline ────────────────────────────────────────────


class DataResolutionPipeline:
    def __init__(
        self,
        executor: ProviderQueryExecutor,
        snapshots: SnapshotStore | None = None,
        catalog: MetricCatalog | None = None,
        synthetic_seed: int | None = None,
    ):
        self._executor = executor
        self._snapshots = snapshots if snapshots is not None else get_snapshot_store()
        self._catalog = catalog or load_metric_catalog()
        self._synthetic_seed = synthetic_seed

    async def resolve_block(self, spec: BlockSpec, scope: Scope, context: ResolutionContext) -> ResolvedDataset:
        ensure_valid(spec)

        with timer() as t:
            dataset = await self._resolve(spec, scope, context)
        logger.info(
            "Block resolved | block=%s report=%s provenance=%s rows=%d comparison_rows=%d elapsed_ms=%s",
            context.block_id, context.report_id, dataset.provenance,
            len(dataset.current_rows), len(dataset.comparison_rows), t["elapsed_ms"],
        )
        return dataset

    async def _resolve(self, spec: BlockSpec, scope: Scope, context: ResolutionContext) -> ResolvedDataset:
        if not context.auth.is_authenticated():
            cached = self._cached(context)
            if cached is not None:
                return cached
            logger.info("Anonymous caller without snapshot -- synthetic data for block=%s", context.block_id)
            return self._synthetic(spec, scope)

        if not scope.has_live_source:
            logger.info("No account configured -- synthetic data for block=%s", context.block_id)
            return self._synthetic(spec, scope)

        live = await self._fetch_live(spec, scope)
        if live is not None:
            self._store(context, live)
            return live

        cached = self._cached(context)
        if cached is not None:
            return cached

        logger.warning("Live fetch failed and no snapshot -- synthetic data for block=%s", context.block_id)
        return self._synthetic(spec, scope)

    # ── Tiers ────────────────────────────────────────

    def _cached(self, context: ResolutionContext) -> ResolvedDataset | None:
        try:
            snapshot = self._snapshots.get(context.block_id, context.report_id)
        except Exception as exc:
            logger.warning("Snapshot read failed for block=%s: %s", context.block_id, exc)
            return None
        if snapshot is None:
            return None
        return snapshot.dataset.with_provenance("cached")

    def _store(self, context: ResolutionContext, dataset: ResolvedDataset) -> None:
        # the live dataset is returned even when it cannot be persisted
        try:
            self._snapshots.put(context.block_id, context.report_id, dataset)
        except Exception as exc:
            logger.warning("Snapshot write failed for block=%s: %s", context.block_id, exc)

    def _synthetic(self, spec: BlockSpec, scope: Scope) -> ResolvedDataset:
        try:
            window: DateWindow | None = scope.window()
        except InvalidSpec:
            window = None
        return generate_synthetic(spec, window, seed=self._synthetic_seed, catalog=self._catalog)

    async def _fetch_live(self, spec: BlockSpec, scope: Scope) -> ResolvedDataset | None:
        """Current + optional comparison fetch; ``None`` when the current one fails."""
        try:
            current_query = compile_block(spec, scope, self._catalog)
            comparison_query = None
            if spec.comparison.enabled:
                prior = previous_window(scope.window(), spec.comparison.kind)
                comparison_query = compile_block(spec, scope.with_window(prior), self._catalog)
        except InvalidSpec as exc:
            logger.warning("Live fetch skipped, invalid scope: %s", exc.message)
            return None

        calls = [self._rows(scope, spec, current_query)]
        if comparison_query is not None:
            calls.append(self._rows(scope, spec, comparison_query))
        outcomes = await asyncio.gather(*calls, return_exceptions=True)

        current = outcomes[0]
        if isinstance(current, BaseException):
            if not isinstance(current, Exception):
                raise current
            logger.warning("Live fetch failed: %s", current)
            return None

        comparison_rows: list[CanonicalRow] = []
        if len(outcomes) > 1:
            prior_outcome = outcomes[1]
            if isinstance(prior_outcome, BaseException):
                if not isinstance(prior_outcome, Exception):
                    raise prior_outcome
                logger.warning("Comparison fetch failed, continuing without comparison: %s", prior_outcome)
            else:
                comparison_rows = prior_outcome

        return ResolvedDataset(current_rows=current, comparison_rows=comparison_rows, provenance="live")

    async def _rows(self, scope: Scope, spec: BlockSpec, descriptor: QueryDescriptor) -> list[CanonicalRow]:
        result = await self._call_executor(scope, descriptor)
        if not result.success:
            raise ProviderUnavailable(result.error or "Provider reported failure")
        fetched = [f for f in descriptor.projection if f != descriptor.dimension]
        try:
            return normalize_for_provider(scope.provider, result.rows, spec, fetched, catalog=self._catalog)
        except ValueError as exc:
            raise ProviderUnavailable(f"Malformed provider response: {exc}") from exc

    async def _call_executor(self, scope: Scope, descriptor: QueryDescriptor) -> Any:
        execute = self._executor.execute
        if inspect.iscoroutinefunction(execute):
            return await execute(scope.account_id, descriptor, scope.provider)
        return await asyncio.to_thread(execute, scope.account_id, descriptor, scope.provider)


# ── Debounced triggering ────────────────────────────────


class ResolutionDebouncer:
    """Collapses bursts of configuration changes into one resolution.

    Each ``trigger`` restarts the quiet period.  A request already in flight
    is never cancelled, but its result is only applied when it belongs to
    the most recent trigger.
    """

    def __init__(
        self,
        pipeline: DataResolutionPipeline,
        delay_seconds: float | None = None,
        on_result: Callable[[ResolvedDataset], None] | None = None,
    ):
        if delay_seconds is None:
            delay_seconds = get_settings().resolution_debounce_ms / 1000
        self._pipeline = pipeline
        self._delay = delay_seconds
        self._on_result = on_result
        self._generation = 0
        self._waiting: dict[int, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()
        self._latest: ResolvedDataset | None = None

    def trigger(self, spec: BlockSpec, scope: Scope, context: ResolutionContext) -> asyncio.Task:
        for task in self._waiting.values():
            task.cancel()
        self._waiting.clear()

        self._generation += 1
        generation = self._generation
        task = asyncio.get_running_loop().create_task(self._run(generation, spec, scope, context))
        self._waiting[generation] = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(
        self, generation: int, spec: BlockSpec, scope: Scope, context: ResolutionContext,
    ) -> ResolvedDataset | None:
        await asyncio.sleep(self._delay)
        self._waiting.pop(generation, None)

        dataset = await self._pipeline.resolve_block(spec, scope, context)
        if generation != self._generation:
            logger.debug("Discarding stale resolution generation=%d latest=%d", generation, self._generation)
            return None

        self._latest = dataset
        if self._on_result is not None:
            self._on_result(dataset)
        return dataset

    def latest(self) -> ResolvedDataset | None:
        return self._latest

    async def wait_idle(self) -> None:
        """Wait for every pending and in-flight resolution to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# ── Module-level entry point ────────────────────────────

_pipeline: DataResolutionPipeline | None = None


def get_pipeline() -> DataResolutionPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = DataResolutionPipeline(HttpProviderExecutor())
    return _pipeline


async def resolve_block(spec: BlockSpec, scope: Scope, context: ResolutionContext) -> ResolvedDataset:
    """Resolve *spec* with the default pipeline (HTTP gateway + configured snapshots)."""
    return await get_pipeline().resolve_block(spec, scope, context)
