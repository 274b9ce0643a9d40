# fleet_rollout_service/src/fleet_rollout_service/routers/__init__.py
"""
Exports the API routers for the Fleet Rollout Service.

This allows the main application to import and include them with a clean path.
- rollout_router: Rollout creation, lifecycle actions and progress.
- drift_router: Drift events and detection.
- health_check_router: Custom health check endpoint CRUD.
- template_router: Rollout template CRUD.
- node_router: Node registration, heartbeats and bundle reports.
- health_router: Handles service health checks.
"""

from .drift_routes import router as drift_router
from .health_check_routes import router as health_check_router
from .health_routes import router as health_router
from .node_routes import router as node_router
from .rollout_routes import router as rollout_router
from .template_routes import router as template_router

__all__ = [
    "drift_router",
    "health_check_router",
    "health_router",
    "node_router",
    "rollout_router",
    "template_router",
]
