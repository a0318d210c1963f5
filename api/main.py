"""FastAPI application factory for the health, status and OAuth surface."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routers import auth, health, prometheus, readings


def create_app(service) -> FastAPI:
    """Build the HTTP app around a running AuraLinkService.

    The service owns every component; the app only reads from it, so routes
    never block the broker or the pipeline.
    """
    app = FastAPI(
        title="AuraLink Backend",
        version="1.0.0",
        description="Sensor ingest and display enrichment service",
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(readings.router)
    app.include_router(prometheus.router)
    app.include_router(auth.router)

    return app
