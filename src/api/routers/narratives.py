"""POST /narratives/bulk -- bulk narrative generation for a report."""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field
from fastapi import APIRouter, HTTPException

from src.engine.errors import InvalidSpec
from src.engine.spec import BlockSpec, DateWindow, ResolvedDataset
from src.narrative.generator import NarrativeService
from src.narrative.scheduler import BulkNarrativeScheduler, GenerationTask
from src.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


class BulkBlock(BaseModel):
    block_id: str = Field(..., min_length=1)
    spec: BlockSpec
    dataset: ResolvedDataset


class BulkRequest(BaseModel):
    blocks: list[BulkBlock] = Field(..., min_length=1)
    start: str = Field(..., description="Report period start (YYYY-MM-DD)")
    end: str = Field(..., description="Report period end (YYYY-MM-DD)")
    mode: Literal["mock", "openai", "anthropic"] | None = Field(None, description="Defaults to settings.llm_provider")
    only_missing: bool = Field(False, description="Skip blocks that already have a description")
    max_concurrency: int | None = Field(None, ge=1, le=10)


class BulkItem(BaseModel):
    block_id: str
    state: str
    description: str | None = None
    description_hash: str | None = None
    error: str | None = None


class BulkResponse(BaseModel):
    results: list[BulkItem]
    progress: dict | None


@router.post("/bulk", response_model=BulkResponse)
async def bulk_endpoint(req: BulkRequest):
    """Generate narratives for every block, at most K at a time."""
    try:
        period = DateWindow.parse(req.start, req.end)
    except InvalidSpec as exc:
        raise HTTPException(status_code=422, detail={"code": exc.code, "errors": exc.errors})

    service = NarrativeService(provider=req.mode)
    scheduler = BulkNarrativeScheduler(service, max_concurrency=req.max_concurrency)

    generated: dict[str, tuple[str, str]] = {}

    def on_block_done(block_id: str, description: str, digest: str) -> None:
        generated[block_id] = (description, digest)

    tasks = [GenerationTask(b.block_id, b.spec, b.dataset, period) for b in req.blocks]
    processed = await scheduler.run(tasks, on_block_done, only_missing=req.only_missing)

    results = []
    for task in processed:
        description, digest = generated.get(task.block_id, (None, None))
        results.append(BulkItem(
            block_id=task.block_id,
            state=task.state,
            description=description,
            description_hash=digest,
            error=task.error,
        ))
    return BulkResponse(results=results, progress=scheduler.progress)
