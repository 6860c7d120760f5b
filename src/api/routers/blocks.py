"""POST /blocks/compile and POST /blocks/resolve -- block resolution endpoints."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field
from fastapi import APIRouter, Depends, HTTPException

from src.engine.comparison import compare_totals, join
from src.engine.compiler import compile_block
from src.engine.errors import InvalidSpec
from src.engine.pipeline import DataResolutionPipeline, ResolutionContext, StaticAuthContext, get_pipeline
from src.engine.spec import BlockSpec, CanonicalRow, Scope
from src.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


class CompileRequest(BaseModel):
    spec: BlockSpec
    scope: Scope


class CompileResponse(BaseModel):
    projection: list[str]
    resource: str
    filter: dict
    order: dict
    limit: int
    gaql: str


class ResolveRequest(BaseModel):
    block_id: str = Field(..., min_length=1)
    report_id: str = Field(..., min_length=1)
    spec: BlockSpec
    scope: Scope = Field(default_factory=Scope)
    authenticated: bool = Field(True, description="Whether the caller is signed in")


class ResolveResponse(BaseModel):
    provenance: str
    resolved_at: datetime
    current_rows: list[CanonicalRow]
    comparison_rows: list[CanonicalRow]
    joined: list[dict] = Field(default_factory=list)
    totals: list[dict] = Field(default_factory=list)


def _invalid(exc: InvalidSpec) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={"code": exc.code, "errors": exc.errors, "error_id": exc.error_id},
    )


@router.post("/compile", response_model=CompileResponse)
def compile_endpoint(req: CompileRequest):
    """Compile a block into its provider-neutral query descriptor."""
    try:
        descriptor = compile_block(req.spec, req.scope)
    except InvalidSpec as exc:
        raise _invalid(exc)

    dumped = descriptor.model_dump(mode="json")
    return CompileResponse(
        projection=dumped["projection"],
        resource=dumped["resource"],
        filter=dumped["filter"],
        order=dumped["order"],
        limit=dumped["limit"],
        gaql=descriptor.to_gaql(),
    )


@router.post("/resolve", response_model=ResolveResponse)
async def resolve_endpoint(req: ResolveRequest, pipeline: DataResolutionPipeline = Depends(get_pipeline)):
    """Resolve a block through the live / cached / synthetic tiers."""
    context = ResolutionContext(
        block_id=req.block_id,
        report_id=req.report_id,
        auth=StaticAuthContext(req.authenticated),
    )
    try:
        dataset = await pipeline.resolve_block(req.spec, req.scope, context)
    except InvalidSpec as exc:
        raise _invalid(exc)

    joined: list[dict] = []
    if req.spec.comparison.enabled and req.spec.dimension:
        joined = [r.to_dict() for r in join(dataset.current_rows, dataset.comparison_rows, req.spec.metrics)]
    totals = [t.to_dict() for t in compare_totals(req.spec.metrics, dataset.current_rows, dataset.comparison_rows)]

    return ResolveResponse(
        provenance=dataset.provenance,
        resolved_at=dataset.resolved_at,
        current_rows=dataset.current_rows,
        comparison_rows=dataset.comparison_rows,
        joined=joined,
        totals=totals,
    )
