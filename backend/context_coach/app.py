"""FastAPI application setup for Context Coach."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from context_coach.api.dependencies import Runtime, build_runtime
from context_coach.api.routes_admin import router as admin_router
from context_coach.api.routes_chat import router as chat_router
from context_coach.api.routes_ingest import router as ingest_router
from context_coach.api.routes_query import router as query_router
from context_coach.core.config import Settings
from context_coach.core.logging import configure_logging, get_logger

configure_logging()
logger = get_logger(__name__)


def create_app(settings: Settings | None = None, runtime: Runtime | None = None) -> FastAPI:
    """Build the API. Without an explicit runtime one is built from settings at startup."""
    app = FastAPI(
        title="Context Coach",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://127.0.0.1:5174",
            "http://localhost:5174",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(ingest_router, prefix="/ingest", tags=["ingest"])
    app.include_router(query_router, prefix="", tags=["search"])
    app.include_router(chat_router, prefix="", tags=["chat"])
    app.include_router(admin_router, prefix="", tags=["admin"])

    @app.on_event("startup")
    async def startup() -> None:
        """Load the embedding cache and start the background workers."""
        if app.state.runtime is None:
            app.state.runtime = build_runtime(settings)
        runtime_settings = app.state.runtime.settings
        configure_logging(runtime_settings.log_level, runtime_settings.log_json)
        await app.state.runtime.start()
        logger.info("Context Coach started with %s cached chunks", app.state.runtime.cache.count)

    @app.on_event("shutdown")
    async def shutdown() -> None:
        if app.state.runtime is not None:
            await app.state.runtime.stop()

    @app.get("/health", tags=["admin"])
    def health() -> dict[str, bool]:
        """Simple liveness check."""
        return {"ok": True}

    return app


app = create_app()
