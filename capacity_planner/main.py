"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from capacity_planner.config import settings
from capacity_planner.database import init_db
from capacity_planner.scenarios import routes as scenario_routes
from capacity_planner.scenarios.errors import (
    AlreadyTerminal,
    EngineError,
    HasChildren,
    InvalidBase,
    InvalidKind,
    InvalidPayload,
    NotFound,
    NotMergeable,
    ScenarioImmutable,
    StorageUnavailable,
)
from capacity_planner.scenarios.service import ScenarioEngine

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Engine error -> HTTP status
ERROR_STATUS = {
    NotFound: 404,
    InvalidBase: 400,
    InvalidKind: 400,
    InvalidPayload: 400,
    AlreadyTerminal: 409,
    ScenarioImmutable: 409,
    NotMergeable: 409,
    HasChildren: 409,
    StorageUnavailable: 503,
}


def status_for(exc: EngineError) -> int:
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status_code
    return 500


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.detail}")
    return JSONResponse(status_code=status_code, content={"error": exc.code, "detail": exc.detail})


def create_app(engine: Optional[ScenarioEngine] = None, bootstrap: bool = True) -> FastAPI:
    """
    Build the API application.

    Args:
        engine: Scenario engine to serve (defaults to one over the configured database)
        bootstrap: On startup, create tables in development and ensure the baseline exists
    """
    scenario_engine = engine or ScenarioEngine()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if bootstrap:
            if settings.APP_ENV == "development":
                await init_db()
            baseline = await scenario_engine.ensure_baseline()
            logger.info(f"Baseline scenario: {baseline.id}")
        yield

    app = FastAPI(
        title="Capacity Planner API",
        description="Scenario versioning for resource capacity planning",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.scenario_engine = scenario_engine

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(EngineError, engine_error_handler)

    # Include routers
    app.include_router(scenario_routes.router, prefix=f"{settings.API_V1_PREFIX}/scenarios", tags=["Scenarios"])

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "message": "Capacity Planner API",
            "version": "0.1.0",
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "capacity_planner.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
