# src/router/routers.py

from fastapi import FastAPI
from src.modules.services.services_controller import router as services_router
from src.modules.queue.queue_controller import router as queue_router
from src.modules.projections.projections_controller import router as projections_router

def include_routers(app: FastAPI) -> None:
    """Include all API routers in the FastAPI application."""
    app.include_router(services_router)
    app.include_router(queue_router)
    app.include_router(projections_router)
