import uuid

import pytest
from fastapi import HTTPException

from fleet_rollout_service.crud import health_checks as health_check_crud
from fleet_rollout_service.crud import rollout_templates as template_crud
from fleet_rollout_service.models import HttpMethod, RolloutStrategy
from fleet_rollout_service.schemas.health_check_schemas import (
    HealthCheckEndpointCreate,
    HealthCheckEndpointUpdate,
)
from fleet_rollout_service.schemas.rollout_schemas import HealthGates, LabelsSelector
from fleet_rollout_service.schemas.template_schemas import (
    RolloutTemplateCreate,
    RolloutTemplateUpdate,
)


def template_data(name, **overrides):
    data = {"name": name, "batch_size": 2}
    data.update(overrides)
    return RolloutTemplateCreate(**data)


def endpoint_data(name, **overrides):
    data = {"name": name, "url": f"http://probe.test/{name}"}
    data.update(overrides)
    return HealthCheckEndpointCreate(**data)


class TestRolloutTemplates:
    @pytest.mark.asyncio
    async def test_create_template(self, db_session, project_id):
        """Test a template stores its selector and gates in their persisted form"""
        template = await template_crud.create_template(
            db_session,
            project_id,
            template_data(
                "canary",
                target_selector=LabelsSelector(labels={"tier": "canary"}),
                health_gates=HealthGates(heartbeat_healthy=True, max_error_rate=0.05),
            ),
        )

        assert template.batch_size == 2
        assert template.strategy == RolloutStrategy.ROLLING
        assert template.target_selector == {"type": "labels", "labels": {"tier": "canary"}}
        assert template.health_gates == {"heartbeat_healthy": True, "max_error_rate": 0.05}

    @pytest.mark.asyncio
    async def test_duplicate_name_conflicts(self, db_session, project_id):
        await template_crud.create_template(db_session, project_id, template_data("canary"))

        with pytest.raises(HTTPException) as excinfo:
            await template_crud.create_template(db_session, project_id, template_data("canary"))
        assert excinfo.value.status_code == 409

        # The same name is free in another project
        await template_crud.create_template(db_session, uuid.uuid4(), template_data("canary"))

    @pytest.mark.asyncio
    async def test_single_default_per_project(self, db_session, project_id):
        first = await template_crud.create_template(
            db_session, project_id, template_data("first", is_default=True)
        )
        second = await template_crud.create_template(
            db_session, project_id, template_data("second", is_default=True)
        )

        default = await template_crud.get_default_template(db_session, project_id)
        assert default.id == second.id
        await db_session.refresh(first)
        assert first.is_default is False

        await template_crud.update_template(
            db_session, project_id, first.id, RolloutTemplateUpdate(is_default=True)
        )
        templates = await template_crud.list_templates(db_session, project_id)
        assert [t.name for t in templates] == ["first", "second"]
        assert [t.is_default for t in templates] == [True, False]

    @pytest.mark.asyncio
    async def test_update_only_touches_given_fields(self, db_session, project_id):
        template = await template_crud.create_template(
            db_session, project_id, template_data("canary", description="small batches")
        )

        updated = await template_crud.update_template(
            db_session, project_id, template.id, RolloutTemplateUpdate(batch_size=5)
        )
        assert updated.batch_size == 5
        assert updated.description == "small batches"

    @pytest.mark.asyncio
    async def test_templates_scoped_to_project(self, db_session, project_id):
        template = await template_crud.create_template(
            db_session, project_id, template_data("canary")
        )

        with pytest.raises(HTTPException) as excinfo:
            await template_crud.get_template(db_session, uuid.uuid4(), template.id)
        assert excinfo.value.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_template(self, db_session, project_id):
        template = await template_crud.create_template(
            db_session, project_id, template_data("canary")
        )
        await template_crud.delete_template(db_session, project_id, template.id)

        with pytest.raises(HTTPException) as excinfo:
            await template_crud.delete_template(db_session, project_id, template.id)
        assert excinfo.value.status_code == 404


class TestHealthCheckEndpoints:
    @pytest.mark.asyncio
    async def test_create_defaults(self, db_session, project_id):
        endpoint = await health_check_crud.create_endpoint(
            db_session, project_id, endpoint_data("api")
        )

        assert endpoint.method == HttpMethod.GET
        assert endpoint.timeout_ms == 5000
        assert endpoint.expected_status == 200
        assert endpoint.enabled is True
        assert endpoint.headers == {}

    @pytest.mark.asyncio
    async def test_duplicate_name_conflicts(self, db_session, project_id):
        await health_check_crud.create_endpoint(db_session, project_id, endpoint_data("api"))

        with pytest.raises(HTTPException) as excinfo:
            await health_check_crud.create_endpoint(db_session, project_id, endpoint_data("api"))
        assert excinfo.value.status_code == 409

    @pytest.mark.asyncio
    async def test_list_enabled_only(self, db_session, project_id):
        await health_check_crud.create_endpoint(db_session, project_id, endpoint_data("a"))
        disabled = await health_check_crud.create_endpoint(
            db_session, project_id, endpoint_data("b", enabled=False)
        )
        await health_check_crud.create_endpoint(db_session, project_id, endpoint_data("c"))

        everything = await health_check_crud.list_endpoints(db_session, project_id)
        enabled = await health_check_crud.list_endpoints(db_session, project_id, enabled_only=True)

        assert len(everything) == 3
        assert {e.name for e in enabled} == {"a", "c"}
        assert disabled.id not in {e.id for e in enabled}

    @pytest.mark.asyncio
    async def test_update_and_delete(self, db_session, project_id):
        endpoint = await health_check_crud.create_endpoint(
            db_session, project_id, endpoint_data("api")
        )

        updated = await health_check_crud.update_endpoint(
            db_session,
            project_id,
            endpoint.id,
            HealthCheckEndpointUpdate(enabled=False, expected_body_contains="ok"),
        )
        assert updated.enabled is False
        assert updated.expected_body_contains == "ok"
        assert updated.url == "http://probe.test/api"

        await health_check_crud.delete_endpoint(db_session, project_id, endpoint.id)
        with pytest.raises(HTTPException) as excinfo:
            await health_check_crud.get_endpoint(db_session, project_id, endpoint.id)
        assert excinfo.value.status_code == 404
