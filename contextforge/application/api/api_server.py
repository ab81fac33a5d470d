from typing import Mapping, Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import datetime, timezone
import asyncio
import structlog

from contextforge.application.api.route import generations_router
from contextforge.application.websocket import ConnectionManager, router as websocket_router
from contextforge.domain.context.content_store import ContentStore, InMemoryContentStore
from contextforge.domain.context.skills import SkillRegistry
from contextforge.domain.errors import GenerationNotFoundError
from contextforge.domain.generation.coordinator import GenerationCoordinator
from contextforge.domain.generation.provider import ProviderClient
from contextforge.domain.generation.record_store import GenerationRecordStore, InMemoryGenerationRecordStore
from contextforge.domain.models.generation import ProviderKind
from contextforge.infrastructure.config import Settings, get_settings
from contextforge.infrastructure.observability import GenerationTracer, metrics, setup_logging
from contextforge.infrastructure.providers import build_providers

logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    content_store: Optional[ContentStore] = None,
    record_store: Optional[GenerationRecordStore] = None,
    providers: Optional[Mapping[ProviderKind, ProviderClient]] = None
) -> FastAPI:
    """Build the API; every collaborator can be injected, the rest come from settings"""

    settings = settings or get_settings()
    record_store = record_store or InMemoryGenerationRecordStore()
    tracer = GenerationTracer.from_settings(settings)

    app = FastAPI(title="ContextForge Generation Server")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.content_store = content_store or InMemoryContentStore()
    app.state.record_store = record_store
    app.state.providers = dict(providers) if providers is not None else build_providers(settings)
    app.state.skills = SkillRegistry()
    app.state.connection_manager = ConnectionManager()
    app.state.coordinator = GenerationCoordinator(
        record_store,
        flush_interval_seconds=settings.flush_interval_seconds,
        tracer=tracer,
        metrics=metrics
    )

    @app.on_event("startup")
    async def startup_event():
        setup_logging(settings.log_level, settings.log_format, settings.service_name)
        logger.info("Generation server started", providers=[kind.value for kind in app.state.providers])

    @app.on_event("shutdown")
    async def shutdown_event():
        await app.state.coordinator.shutdown()
        await app.state.connection_manager.disconnect_all()
        logger.info("Generation server shutdown")

    @app.exception_handler(GenerationNotFoundError)
    async def generation_not_found_handler(request: Request, exc: GenerationNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "active_generations": app.state.coordinator.active_generations,
            "active_connections": len(app.state.connection_manager.active_connections),
            "metrics": app.state.coordinator.metrics.summary(),
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    @app.get("/providers/health")
    async def providers_health():
        kinds = list(app.state.providers.keys())
        results = await asyncio.gather(*(app.state.providers[kind].check_health() for kind in kinds))
        return {kind.value: result.model_dump() for kind, result in zip(kinds, results)}

    app.include_router(generations_router)
    app.include_router(websocket_router)

    return app


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.api_host, port=settings.api_port)
