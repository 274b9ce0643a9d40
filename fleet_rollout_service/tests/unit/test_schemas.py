"""
Unit tests for request validation.
"""
import uuid

import pytest
from pydantic import ValidationError

from fleet_rollout_service.models import RolloutStrategy
from fleet_rollout_service.schemas.health_check_schemas import (
    HealthCheckEndpointCreate,
    HealthCheckEndpointUpdate,
)
from fleet_rollout_service.schemas.rollout_schemas import (
    AllSelector,
    HealthGates,
    LabelsSelector,
    NodeIdsSelector,
    RolloutCreate,
    parse_target_selector,
)
from fleet_rollout_service.schemas.template_schemas import RolloutTemplateCreate


def _rollout_payload(**overrides):
    payload = {"bundle_id": str(uuid.uuid4()), "target_selector": {"type": "all"}}
    payload.update(overrides)
    return payload


class TestTargetSelector:
    def test_selector_variants(self):
        assert isinstance(parse_target_selector({"type": "all"}), AllSelector)
        assert isinstance(
            parse_target_selector({"type": "labels", "labels": {"env": "prod"}}), LabelsSelector
        )
        node_id = uuid.uuid4()
        selector = parse_target_selector({"type": "node_ids", "node_ids": [str(node_id)]})
        assert isinstance(selector, NodeIdsSelector)
        assert selector.node_ids == [node_id]

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            parse_target_selector({"type": "random", "count": 3})

    def test_empty_labels_rejected(self):
        with pytest.raises(ValidationError):
            parse_target_selector({"type": "labels", "labels": {}})

    def test_empty_node_ids_rejected(self):
        with pytest.raises(ValidationError):
            parse_target_selector({"type": "node_ids", "node_ids": []})

    def test_node_ids_deduplicated_in_order(self):
        a, b = uuid.uuid4(), uuid.uuid4()
        selector = NodeIdsSelector(node_ids=[a, b, a])
        assert selector.node_ids == [a, b]

    def test_extra_selector_keys_rejected(self):
        with pytest.raises(ValidationError):
            parse_target_selector({"type": "all", "labels": {"env": "prod"}})


class TestHealthGates:
    def test_unknown_gate_key_rejected(self):
        with pytest.raises(ValidationError):
            HealthGates.model_validate({"heartbeat_healthy": True, "max_disk_percent": 90})

    def test_to_config_drops_unset_keys(self):
        gates = HealthGates(heartbeat_healthy=True, max_error_rate=0.05)
        assert gates.to_config() == {"heartbeat_healthy": True, "max_error_rate": 0.05}

    def test_percent_out_of_range(self):
        with pytest.raises(ValidationError):
            HealthGates(max_cpu_percent=120)


class TestRolloutCreate:
    def test_defaults(self):
        data = RolloutCreate(**_rollout_payload())
        assert data.strategy == RolloutStrategy.ROLLING
        assert data.batch_size == 1
        assert data.max_unavailable == 0
        assert data.progress_deadline_seconds == 600
        assert data.health_gates.to_config() == {"heartbeat_healthy": True}
        assert data.approvals_required == 0
        assert data.start_immediately is False

    @pytest.mark.parametrize(
        "field,value",
        [
            ("batch_size", 0),
            ("max_unavailable", -1),
            ("progress_deadline_seconds", 0),
            ("approvals_required", -1),
        ],
    )
    def test_numeric_bounds(self, field, value):
        with pytest.raises(ValidationError):
            RolloutCreate(**_rollout_payload(**{field: value}))

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            RolloutCreate(**_rollout_payload(max_surge=2))


class TestTemplateAndEndpointSchemas:
    def test_template_name_length(self):
        with pytest.raises(ValidationError):
            RolloutTemplateCreate(name="x" * 101)

    def test_template_description_length(self):
        with pytest.raises(ValidationError):
            RolloutTemplateCreate(name="canary", description="d" * 501)

    def test_endpoint_url_must_be_http(self):
        with pytest.raises(ValidationError):
            HealthCheckEndpointCreate(name="probe", url="ftp://example.com/health")

    def test_endpoint_url_needs_host(self):
        with pytest.raises(ValidationError):
            HealthCheckEndpointCreate(name="probe", url="http:///health")

    @pytest.mark.parametrize("timeout_ms", [0, 60001])
    def test_endpoint_timeout_bounds(self, timeout_ms):
        with pytest.raises(ValidationError):
            HealthCheckEndpointCreate(
                name="probe", url="http://svc.local/health", timeout_ms=timeout_ms
            )

    def test_endpoint_update_validates_url(self):
        with pytest.raises(ValidationError):
            HealthCheckEndpointUpdate(url="not a url")
        assert HealthCheckEndpointUpdate(enabled=False).url is None
