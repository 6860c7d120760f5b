"""
FastAPI application entry-point.
"""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routers import blocks, catalog, narratives

app = FastAPI(
    title="Block Resolution Engine",
    version="0.1.0",
    description="Resolves analytics report blocks into live, cached or synthetic datasets",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(blocks.router, prefix="/blocks", tags=["Blocks"])
app.include_router(narratives.router, prefix="/narratives", tags=["Narratives"])
app.include_router(catalog.router, tags=["Catalog"])


@app.get("/health")
def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    from src.core.config import get_settings

    uvicorn.run("src.api.main:app", host="0.0.0.0", port=get_settings().api_port)
