# fleet_rollout_service/src/fleet_rollout_service/crud/__init__.py
from . import bundles, drift_events, health_checks, nodes, rollout_templates, rollouts

__all__ = [
    "bundles",
    "drift_events",
    "health_checks",
    "nodes",
    "rollout_templates",
    "rollouts",
]
