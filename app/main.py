"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from app.api import router as api_router
from app.services.engine import build_engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests may install their own engine before startup
    engine = getattr(app.state, "engine", None) or build_engine()
    engine.start()
    app.state.engine = engine
    try:
        yield
    finally:
        await engine.stop()


app = FastAPI(
    title="RFI Answer Engine",
    description="Questionnaire extraction and retrieval-augmented answering service",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


# Include v1 API router
app.include_router(api_router, prefix="/v1", tags=["v1"])
