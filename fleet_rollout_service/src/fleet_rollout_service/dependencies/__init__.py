"""
This package contains reusable dependencies for the Fleet Rollout Service.

By importing the main dependency functions here, we provide a stable access point
for our routers, abstracting away the internal module structure (e.g., app_deps.py).
"""

from fleet_rollout_service.dependencies.app_deps import (
    get_actor_id,
    get_optional_actor_id,
    get_tick_scheduler,
)

# List defines the public API of this package.
__all__ = [
    "get_actor_id",
    "get_optional_actor_id",
    "get_tick_scheduler",
]
