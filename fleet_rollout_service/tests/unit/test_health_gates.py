"""
Unit tests for health gate evaluation and the HTTP probe client.
"""
import uuid
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
import respx

from fleet_rollout_service.clients.health_probe_client import build_timeout, probe_endpoint
from fleet_rollout_service.models import (
    HealthCheckEndpoint,
    HttpMethod,
    Node,
    NodeHeartbeat,
    NodeStatus,
)
from fleet_rollout_service.schemas.rollout_schemas import HealthGates
from fleet_rollout_service.services import health_gates
from tests.fixtures.helpers import at

PROBE_BASE_URL = "http://probe.test"


@pytest_asyncio.fixture
async def respx_router() -> AsyncGenerator[respx.MockRouter, None]:
    """Intercepts every probe request made against PROBE_BASE_URL."""
    async with respx.mock(base_url=PROBE_BASE_URL, assert_all_called=False) as mock:
        yield mock


def make_node(name="node-a", last_seen=0, status=NodeStatus.ONLINE) -> Node:
    return Node(
        id=uuid.uuid4(),
        project_id=uuid.uuid4(),
        name=name,
        status=status,
        last_seen_at=at(last_seen) if last_seen is not None else None,
    )


def make_heartbeat(node: Node, status="healthy", **metrics) -> NodeHeartbeat:
    return NodeHeartbeat(node_id=node.id, health={"status": status}, metrics=metrics)


def make_endpoint(name="api", path="/health", **overrides) -> HealthCheckEndpoint:
    fields = {
        "id": uuid.uuid4(),
        "project_id": uuid.uuid4(),
        "name": name,
        "url": f"{PROBE_BASE_URL}{path}",
        "method": HttpMethod.GET,
        "timeout_ms": 1000,
        "expected_status": 200,
        "expected_body_contains": None,
        "headers": {},
        "enabled": True,
    }
    fields.update(overrides)
    return HealthCheckEndpoint(**fields)


class TestHeartbeatGate:
    def test_fresh_healthy_nodes_pass(self):
        node = make_node(last_seen=100)
        result = health_gates.check_heartbeats(
            [node], {node.id: make_heartbeat(node)}, at(150), 120
        )
        assert result.passed

    def test_stale_node_fails(self):
        node = make_node(last_seen=0)
        result = health_gates.check_heartbeats(
            [node], {node.id: make_heartbeat(node)}, at(200), 120
        )
        assert not result.passed
        assert "no heartbeat within 120s" in result.reason

    def test_never_seen_node_fails(self):
        node = make_node(last_seen=None, status=NodeStatus.UNKNOWN)
        result = health_gates.check_heartbeats([node], {}, at(0), 120)
        assert not result.passed

    def test_reported_unhealthy_status_fails(self):
        node = make_node(last_seen=100)
        result = health_gates.check_heartbeats(
            [node], {node.id: make_heartbeat(node, status="degraded")}, at(110), 120
        )
        assert not result.passed
        assert "'degraded'" in result.reason

    def test_falls_back_to_node_status(self):
        node = make_node(last_seen=100, status=NodeStatus.ONLINE)
        assert health_gates.check_heartbeats([node], {}, at(110), 120).passed


class TestMetricGates:
    def test_threshold_exceeded(self):
        node = make_node()
        result = health_gates.check_metric_threshold(
            [node], {node.id: make_heartbeat(node, latency_p99_ms=450)}, "latency_p99_ms", 300
        )
        assert not result.passed
        assert "latency_p99_ms 450 exceeds 300" in result.reason

    def test_threshold_equal_passes(self):
        node = make_node()
        result = health_gates.check_metric_threshold(
            [node], {node.id: make_heartbeat(node, cpu_percent=80)}, "cpu_percent", 80
        )
        assert result.passed

    def test_missing_metric_fails(self):
        node = make_node()
        result = health_gates.check_metric_threshold(
            [node], {node.id: make_heartbeat(node)}, "memory_percent", 90
        )
        assert not result.passed
        assert "has no memory_percent metric" in result.reason

    def test_unset_thresholds_are_skipped(self):
        node = make_node(last_seen=0)
        result = health_gates.evaluate_builtin_gates(
            [node], HealthGates(), {node.id: make_heartbeat(node)}, at(1000)
        )
        assert result.passed

    def test_heartbeat_checked_before_metrics(self):
        node = make_node(last_seen=0)
        gates = HealthGates(heartbeat_healthy=True, max_error_rate=0.1)
        result = health_gates.evaluate_builtin_gates(
            [node], gates, {node.id: make_heartbeat(node, error_rate=0.5)}, at(500), 120
        )
        assert "no heartbeat" in result.reason


class TestEvaluateHealthGates:
    @pytest.mark.asyncio
    async def test_endpoints_run_after_builtins(self, respx_router):
        route = respx_router.get("/health").mock(return_value=httpx.Response(200))
        node = make_node(last_seen=0)

        result = await health_gates.evaluate_health_gates(
            [node],
            {"heartbeat_healthy": True},
            [make_endpoint()],
            {node.id: make_heartbeat(node)},
            now=at(500),
        )
        assert not result.passed
        assert not route.called

    @pytest.mark.asyncio
    async def test_first_failing_endpoint_wins(self, respx_router):
        respx_router.get("/a").mock(return_value=httpx.Response(503))
        second = respx_router.get("/b").mock(return_value=httpx.Response(200))
        node = make_node(last_seen=0)

        result = await health_gates.evaluate_health_gates(
            [node],
            {"heartbeat_healthy": True},
            [make_endpoint("a", "/a"), make_endpoint("b", "/b")],
            {node.id: make_heartbeat(node)},
            now=at(10),
        )
        assert result.reason == "Health check 'a' failed: Expected status 200, got 503"
        assert not second.called

    @pytest.mark.asyncio
    async def test_disabled_endpoints_are_skipped(self, respx_router):
        route = respx_router.get("/health").mock(return_value=httpx.Response(500))
        node = make_node(last_seen=0)

        result = await health_gates.evaluate_health_gates(
            [node],
            {"heartbeat_healthy": True},
            [make_endpoint(enabled=False)],
            {node.id: make_heartbeat(node)},
            now=at(10),
        )
        assert result.passed
        assert not route.called


class TestProbeEndpoint:
    @pytest.mark.asyncio
    async def test_success_sends_configured_headers(self, respx_router):
        route = respx_router.get("/health").mock(return_value=httpx.Response(200, text="ok"))

        result = await probe_endpoint(make_endpoint(headers={"X-Probe": "fleet"}))
        assert result.success
        assert result.status_code == 200
        assert route.call_count == 1
        assert route.calls.last.request.headers["X-Probe"] == "fleet"

    @pytest.mark.asyncio
    async def test_body_must_contain_expected_text(self, respx_router):
        respx_router.get("/health").mock(return_value=httpx.Response(200, text="status: degraded"))

        result = await probe_endpoint(make_endpoint(expected_body_contains="status: ok"))
        assert not result.success
        assert result.reason == "Response body does not contain expected content"

    @pytest.mark.asyncio
    async def test_post_sends_empty_body(self, respx_router):
        route = respx_router.post("/check").mock(return_value=httpx.Response(204))

        result = await probe_endpoint(
            make_endpoint(path="/check", method=HttpMethod.POST, expected_status=204)
        )
        assert result.success
        assert route.calls.last.request.content == b""

    @pytest.mark.asyncio
    async def test_timeout_is_reported(self, respx_router):
        respx_router.get("/slow").mock(side_effect=httpx.ReadTimeout("timed out"))

        result = await probe_endpoint(make_endpoint(path="/slow", timeout_ms=250))
        assert not result.success
        assert result.reason == "Request failed: timeout after 250ms"

    @pytest.mark.asyncio
    async def test_connection_error_is_reported_once(self, respx_router):
        route = respx_router.get("/down").mock(side_effect=httpx.ConnectError("refused"))

        result = await probe_endpoint(make_endpoint(path="/down"))
        assert not result.success
        assert result.reason.startswith("Request failed: ConnectError")
        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_shared_client_is_used(self, respx_router):
        respx_router.head("/health").mock(return_value=httpx.Response(200))

        async with httpx.AsyncClient() as client:
            result = await probe_endpoint(make_endpoint(method=HttpMethod.HEAD), client=client)
        assert result.success


def test_connect_timeout_is_capped():
    timeout = build_timeout(60000)
    assert timeout.read == 60.0
    assert timeout.connect == 5.0

    short = build_timeout(800)
    assert short.connect == 0.8
