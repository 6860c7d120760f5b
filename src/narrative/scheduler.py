"""
Bulk narrative scheduler.

Processes many GenerationTasks with a fixed pool of K worker coroutines
pulling from a shared deque.  A failing task never stops the others.
``cancel()`` stops further dequeuing; tasks already running finish.

Also home of the config hash used to detect stale stored narratives.
"""
from __future__ import annotations

import asyncio
import hashlib
import inspect
import json
from collections import deque
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Iterable

from src.engine.spec import BlockSpec, DateWindow, ResolvedDataset
from src.narrative.generator import NarrativeRequest, NarrativeResult, NarrativeService
from src.core.config import get_settings
from src.core.logging import get_logger
from src.core.utils import iso_day

logger = get_logger(__name__)

QUEUED = "queued"
RUNNING = "running"
DONE = "done"
FAILED = "failed"


# ── Config hash ─────────────────────────────────────────


def config_hash(spec: BlockSpec, start: date | str | None = None, end: date | str | None = None) -> str:
    """Deterministic hash of the settings a narrative depends on.

    Metric order, title and limit do not affect the hash; the period is
    reduced to date-only precision.
    """
    payload = {
        "metrics": sorted(spec.metrics),
        "dimension": spec.dimension or "",
        "visualization": spec.visualization,
        "show_comparison": spec.comparison.enabled,
        "comparison_type": spec.comparison.kind,
        "start": iso_day(start),
        "end": iso_day(end),
    }
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


def is_description_stale(spec: BlockSpec, start: date | str | None = None, end: date | str | None = None) -> bool:
    """True when a stored narrative was generated for a different configuration."""
    if not spec.description or not spec.description_hash:
        return False
    return config_hash(spec, start, end) != spec.description_hash


# ── Task / state types ──────────────────────────────────


@dataclass
class GenerationTask:
    block_id: str
    spec: BlockSpec
    dataset: ResolvedDataset
    period: DateWindow
    state: str = QUEUED
    error: str | None = None

    def to_request(self) -> NarrativeRequest:
        return NarrativeRequest(block_id=self.block_id, spec=self.spec, dataset=self.dataset, period=self.period)


@dataclass
class BlockState:
    is_generating: bool = False
    error: str | None = None


BlockDoneCallback = Callable[[str, str, str], Any]


# ── Scheduler ───────────────────────────────────────────


class BulkNarrativeScheduler:
    def __init__(
        self,
        service: NarrativeService | Any,
        max_concurrency: int | None = None,
        clear_after: float | None = None,
    ):
        settings = get_settings()
        self._service = service
        self._max_concurrency = max_concurrency if max_concurrency is not None else settings.narrative_max_concurrency
        if self._max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._clear_after = clear_after if clear_after is not None else settings.bulk_progress_clear_seconds

        self._cancelled = False
        self._running = False
        self._on_overall_cancel: Callable[[], Any] | None = None
        self._progress: dict[str, Any] | None = None
        self._states: dict[str, BlockState] = {}
        self._run_id = 0

    # ── Introspection ────────────────────────────────

    @property
    def progress(self) -> dict[str, Any] | None:
        """``{total, completed, failed, in_progress}`` or None when idle."""
        if self._progress is None:
            return None
        return {**self._progress, "in_progress": list(self._progress["in_progress"])}

    @property
    def is_running(self) -> bool:
        return self._running

    def block_state(self, block_id: str) -> BlockState:
        state = self._states.get(block_id)
        return BlockState(state.is_generating, state.error) if state else BlockState()

    def clear_block_error(self, block_id: str) -> None:
        if block_id in self._states:
            self._states[block_id].error = None

    # ── Control ──────────────────────────────────────

    def cancel(self) -> None:
        """Stop dequeuing.  Tasks already running are allowed to finish."""
        if not self._running or self._cancelled:
            return
        self._cancelled = True
        logger.info("Bulk narrative generation cancelled")
        if self._on_overall_cancel is not None:
            self._on_overall_cancel()

    async def run(
        self,
        tasks: Iterable[GenerationTask],
        on_block_done: BlockDoneCallback,
        on_overall_cancel: Callable[[], Any] | None = None,
        only_missing: bool = False,
    ) -> list[GenerationTask]:
        if self._running:
            raise RuntimeError("A bulk generation run is already in progress")

        pending = [t for t in tasks if not (only_missing and t.spec.description)]
        if not pending:
            return []

        self._running = True
        self._cancelled = False
        self._on_overall_cancel = on_overall_cancel
        self._run_id += 1
        self._progress = {"total": len(pending), "completed": 0, "failed": 0, "in_progress": []}

        queue: deque[GenerationTask] = deque(pending)
        worker_count = min(self._max_concurrency, len(pending))
        logger.info("Bulk narrative generation started tasks=%d workers=%d", len(pending), worker_count)

        try:
            await asyncio.gather(*(self._worker(queue, on_block_done) for _ in range(worker_count)))
        finally:
            self._running = False
            self._on_overall_cancel = None
            self._schedule_clear(self._run_id)

        logger.info(
            "Bulk narrative generation finished completed=%d failed=%d skipped=%d",
            self._progress["completed"], self._progress["failed"], len(queue),
        )
        return pending

    # ── Internals ────────────────────────────────────

    async def _worker(self, queue: deque[GenerationTask], on_block_done: BlockDoneCallback) -> None:
        while queue and not self._cancelled:
            task = queue.popleft()
            await self._process(task, on_block_done)

    async def _process(self, task: GenerationTask, on_block_done: BlockDoneCallback) -> None:
        task.state = RUNNING
        self._progress["in_progress"].append(task.block_id)
        self._states[task.block_id] = BlockState(is_generating=True)
        logger.debug("Narrative task started block=%s", task.block_id)

        try:
            result = await self._generate(task.to_request())
            digest = config_hash(task.spec, task.period.start, task.period.end)
            outcome = on_block_done(task.block_id, result.text, digest)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            task.state = FAILED
            task.error = str(exc) or exc.__class__.__name__
            self._states[task.block_id] = BlockState(is_generating=False, error=task.error)
            self._progress["failed"] += 1
            logger.warning("Narrative task failed block=%s: %s", task.block_id, task.error)
        else:
            task.state = DONE
            self._states[task.block_id] = BlockState(is_generating=False)
            self._progress["completed"] += 1
            logger.debug("Narrative task done block=%s", task.block_id)
        finally:
            self._progress["in_progress"].remove(task.block_id)

    async def _generate(self, request: NarrativeRequest) -> NarrativeResult:
        generate = self._service.generate
        if inspect.iscoroutinefunction(generate):
            return await generate(request)
        return await asyncio.to_thread(generate, request)

    def _schedule_clear(self, run_id: int) -> None:
        def _clear() -> None:
            # a newer run owns the progress now
            if self._run_id == run_id and not self._running:
                self._progress = None

        asyncio.get_running_loop().call_later(self._clear_after, _clear)


# ── Module-level entry point ────────────────────────────


async def run_bulk_narrative_generation(
    tasks: Iterable[GenerationTask],
    on_block_done: BlockDoneCallback,
    service: NarrativeService | None = None,
    max_concurrency: int | None = None,
    only_missing: bool = False,
) -> list[GenerationTask]:
    """Generate narratives for *tasks* with a fresh scheduler."""
    scheduler = BulkNarrativeScheduler(service or NarrativeService(), max_concurrency=max_concurrency)
    return await scheduler.run(tasks, on_block_done, only_missing=only_missing)
