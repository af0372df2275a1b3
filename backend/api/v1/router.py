"""API v1 aggregated router.

All v1 endpoints are registered here and mounted under /api/v1 in main.py.
"""

from fastapi import APIRouter

from api.routes import events, graphs, runs

api_v1_router = APIRouter()

# Domain event ingestion
api_v1_router.include_router(
    events.router,
    prefix="/events",
    tags=["Events"],
)

# Graph authoring
api_v1_router.include_router(
    graphs.router,
    prefix="/graphs",
    tags=["Graphs"],
)

# Run history
api_v1_router.include_router(
    runs.router,
    prefix="/runs",
    tags=["Runs"],
)
