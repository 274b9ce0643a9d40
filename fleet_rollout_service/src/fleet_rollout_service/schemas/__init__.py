from .common import CountResponse, PaginatedResponse
from .drift_schemas import (
    DriftDetectionResult,
    DriftEventResponse,
    DriftEventStats,
    DriftResolveRequest,
    DriftStats,
)
from .health_check_schemas import (
    HealthCheckEndpointCreate,
    HealthCheckEndpointResponse,
    HealthCheckEndpointUpdate,
)
from .node_schemas import (
    BundleReportRequest,
    BundleReportState,
    HeartbeatRequest,
    NodeCreate,
    NodeResponse,
)
from .rollout_schemas import (
    ApproveRequest,
    HealthGates,
    ProgressSummary,
    RejectRequest,
    RolloutCreate,
    RolloutDetailResponse,
    RolloutFromTemplate,
    RolloutResponse,
    TargetSelector,
    TickResponse,
)
from .template_schemas import (
    RolloutTemplateCreate,
    RolloutTemplateResponse,
    RolloutTemplateUpdate,
)

__all__ = [
    "CountResponse",
    "PaginatedResponse",
    "DriftDetectionResult",
    "DriftEventResponse",
    "DriftEventStats",
    "DriftResolveRequest",
    "DriftStats",
    "HealthCheckEndpointCreate",
    "HealthCheckEndpointResponse",
    "HealthCheckEndpointUpdate",
    "BundleReportRequest",
    "BundleReportState",
    "HeartbeatRequest",
    "NodeCreate",
    "NodeResponse",
    "ApproveRequest",
    "HealthGates",
    "ProgressSummary",
    "RejectRequest",
    "RolloutCreate",
    "RolloutDetailResponse",
    "RolloutFromTemplate",
    "RolloutResponse",
    "TargetSelector",
    "TickResponse",
    "RolloutTemplateCreate",
    "RolloutTemplateResponse",
    "RolloutTemplateUpdate",
]
