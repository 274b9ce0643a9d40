# fleet_rollout_service/src/fleet_rollout_service/exceptions.py
"""
Domain exceptions raised by the rollout engine.

Each error carries a stable ``reason`` string that callers can match on, plus
an optional free-form ``detail``. The API layer maps them to JSON responses
using ``status_code``.
"""
from typing import Any, Optional

from fastapi import status


class RolloutServiceError(Exception):
    """Base class for every rejected rollout-engine operation."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, reason: str, detail: Optional[Any] = None):
        self.reason = reason
        self.detail = detail
        super().__init__(reason if detail is None else f"{reason}: {detail}")


class RolloutValidationError(RolloutServiceError):
    """The rollout request cannot be planned (e.g. "no target nodes")."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class BundleUnavailableError(RolloutServiceError):
    """The bundle is missing, not compiled yet, or revoked."""

    status_code = status.HTTP_409_CONFLICT


class InvalidTransitionError(RolloutServiceError):
    """A guarded state transition was attempted from the wrong state."""

    status_code = status.HTTP_409_CONFLICT


class ApprovalError(RolloutServiceError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, reason: str, detail: Optional[Any] = None):
        super().__init__(reason, detail)
        if reason == "self approval":
            self.status_code = status.HTTP_403_FORBIDDEN
        elif reason == "comment required":
            self.status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class DriftEventAlreadyResolvedError(RolloutServiceError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, detail: Optional[Any] = None):
        super().__init__("already resolved", detail)


class TickInFlightError(RolloutServiceError):
    """A tick for the rollout is already running; ticks never overlap."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, detail: Optional[Any] = None):
        super().__init__("tick in flight", detail)
