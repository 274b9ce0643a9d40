"""
Service layer package.

Import submodules directly where needed, e.g.:

    from fleet_rollout_service.services import orchestrator
    from fleet_rollout_service.services import rollout_service

The tick scheduler pulls in the database engine factory, so nothing is
imported eagerly here.
"""

__all__ = []
