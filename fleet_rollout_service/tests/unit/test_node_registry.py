import uuid

import pytest
from fastapi import HTTPException

from fleet_rollout_service.crud import nodes as node_crud
from fleet_rollout_service.crud import rollouts as rollout_crud
from fleet_rollout_service.models import NodeBundleState, NodeStatus
from fleet_rollout_service.schemas.node_schemas import BundleReportState, NodeCreate
from fleet_rollout_service.services.orchestrator import tick
from tests.fixtures.helpers import (
    at,
    create_test_bundle,
    create_test_node,
    create_test_rollout,
)


class TestRegistration:
    @pytest.mark.asyncio
    async def test_register_node(self, db_session, project_id):
        """Test a registered node starts unknown with its labels and capabilities"""
        node = await node_crud.register_node(
            db_session,
            project_id,
            NodeCreate(name="edge-1", labels={"region": "eu"}, capabilities=["wasm"]),
            now=at(0),
        )

        assert node.status == NodeStatus.UNKNOWN
        assert node.labels == {"region": "eu"}
        assert node.capabilities == ["wasm"]
        assert node.registered_at == at(0)
        assert node.last_seen_at is None

    @pytest.mark.asyncio
    async def test_get_unknown_node(self, db_session):
        with pytest.raises(HTTPException) as excinfo:
            await node_crud.get_node(db_session, uuid.uuid4())
        assert excinfo.value.status_code == 404

    @pytest.mark.asyncio
    async def test_list_filters(self, db_session, project_id):
        """Test label and status filters combine"""
        await create_test_node(db_session, project_id, "a", labels={"region": "eu", "tier": "edge"})
        await create_test_node(
            db_session, project_id, "b", labels={"region": "eu"}, status=NodeStatus.ONLINE
        )
        await create_test_node(db_session, project_id, "c", labels={"region": "us"})
        await create_test_node(db_session, uuid.uuid4(), "d", labels={"region": "eu"})

        eu = await node_crud.list_nodes(db_session, project_id, labels={"region": "eu"})
        assert {n.name for n in eu} == {"a", "b"}

        eu_online = await node_crud.list_nodes(
            db_session, project_id, node_status=NodeStatus.ONLINE, labels={"region": "eu"}
        )
        assert [n.name for n in eu_online] == ["b"]

        assert await node_crud.list_nodes(db_session, project_id, labels={"tier": "core"}) == []


class TestHeartbeats:
    @pytest.mark.asyncio
    async def test_heartbeat_marks_node_online(self, db_session, project_id):
        node = await create_test_node(db_session, project_id, "edge-1")
        bundle = await create_test_bundle(db_session, project_id)

        heartbeat = await node_crud.record_heartbeat(
            db_session,
            node.id,
            health={"status": "healthy"},
            metrics={"error_rate": 0.01},
            active_bundle_id=bundle.id,
            now=at(5),
        )

        assert node.status == NodeStatus.ONLINE
        assert node.last_seen_at == at(5)
        assert node.active_bundle_id == bundle.id
        assert heartbeat.metrics == {"error_rate": 0.01}

    @pytest.mark.asyncio
    async def test_heartbeat_without_pointers_keeps_them(self, db_session, project_id):
        node = await create_test_node(db_session, project_id, "edge-1")
        bundle = await create_test_bundle(db_session, project_id)
        node.active_bundle_id = bundle.id
        await db_session.flush()

        await node_crud.record_heartbeat(db_session, node.id, now=at(5))
        assert node.active_bundle_id == bundle.id

    @pytest.mark.asyncio
    async def test_latest_heartbeat_per_node(self, db_session, project_id):
        first = await create_test_node(db_session, project_id, "a")
        second = await create_test_node(db_session, project_id, "b")
        silent = await create_test_node(db_session, project_id, "c")

        await node_crud.record_heartbeat(db_session, first.id, health={"n": 1}, now=at(1))
        await node_crud.record_heartbeat(db_session, first.id, health={"n": 2}, now=at(2))
        await node_crud.record_heartbeat(db_session, second.id, health={"n": 3}, now=at(1))

        latest = await node_crud.get_latest_heartbeats(
            db_session, [first.id, second.id, silent.id]
        )
        assert latest[first.id].health == {"n": 2}
        assert latest[second.id].health == {"n": 3}
        assert silent.id not in latest

    @pytest.mark.asyncio
    async def test_mark_stale_nodes_offline(self, db_session, project_id):
        fresh = await create_test_node(db_session, project_id, "fresh")
        stale = await create_test_node(db_session, project_id, "stale")
        never = await create_test_node(db_session, project_id, "never")
        await node_crud.record_heartbeat(db_session, fresh.id, now=at(250))
        await node_crud.record_heartbeat(db_session, stale.id, now=at(0))

        count = await node_crud.mark_stale_nodes_offline(db_session, 300, now=at(301))

        assert count == 1
        assert stale.status == NodeStatus.OFFLINE
        assert fresh.status == NodeStatus.ONLINE
        assert never.status == NodeStatus.UNKNOWN


class TestBundleReports:
    async def _staging_row(self, db, project_id):
        bundle = await create_test_bundle(db, project_id)
        node = await create_test_node(db, project_id, "edge-1")
        rollout = await create_test_rollout(db, project_id, bundle, now=at(0))
        await tick(db, rollout.id, now=at(1))
        [row] = await rollout_crud.get_node_statuses(db, rollout.id, [node.id])
        assert row.state == NodeBundleState.STAGING
        return bundle, node, row

    @pytest.mark.asyncio
    async def test_reports_move_forward(self, db_session, project_id):
        """Test staged then activated reports advance the row and the node pointers"""
        bundle, node, row = await self._staging_row(db_session, project_id)

        advanced = await node_crud.record_bundle_report(
            db_session, node.id, bundle.id, BundleReportState.STAGED, now=at(2)
        )
        assert advanced == [row]
        assert row.state == NodeBundleState.STAGED
        assert node.staged_bundle_id == bundle.id

        await node_crud.record_bundle_report(
            db_session, node.id, bundle.id, BundleReportState.ACTIVATED, now=at(3)
        )
        assert row.state == NodeBundleState.ACTIVE
        assert node.active_bundle_id == bundle.id
        assert node.staged_bundle_id is None
        assert node.last_seen_at == at(3)

    @pytest.mark.asyncio
    async def test_backward_report_ignored(self, db_session, project_id):
        bundle, node, row = await self._staging_row(db_session, project_id)
        await node_crud.record_bundle_report(
            db_session, node.id, bundle.id, BundleReportState.ACTIVATING, now=at(2)
        )

        advanced = await node_crud.record_bundle_report(
            db_session, node.id, bundle.id, BundleReportState.STAGED, now=at(3)
        )
        assert advanced == []
        assert row.state == NodeBundleState.ACTIVATING

    @pytest.mark.asyncio
    async def test_terminal_rows_never_change(self, db_session, project_id):
        bundle, node, row = await self._staging_row(db_session, project_id)
        await node_crud.record_bundle_report(
            db_session, node.id, bundle.id, BundleReportState.ACTIVATED, now=at(2)
        )

        advanced = await node_crud.record_bundle_report(
            db_session, node.id, bundle.id, BundleReportState.FAILED, reason="disk full", now=at(3)
        )
        assert advanced == []
        assert row.state == NodeBundleState.ACTIVE

    @pytest.mark.asyncio
    async def test_failure_records_reason(self, db_session, project_id):
        bundle, node, row = await self._staging_row(db_session, project_id)

        await node_crud.record_bundle_report(
            db_session,
            node.id,
            bundle.id,
            BundleReportState.FAILED,
            reason="checksum mismatch",
            error={"code": "E_CHECKSUM"},
            now=at(2),
        )
        assert row.state == NodeBundleState.FAILED
        assert row.reason == "checksum mismatch"
        assert row.error == {"code": "E_CHECKSUM"}
