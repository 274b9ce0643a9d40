# fleet_rollout_service/src/fleet_rollout_service/crud/bundles.py
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import BundleUnavailableError
from ..models.bundle import Bundle, BundleStatus


async def get_bundle(db: AsyncSession, bundle_id: UUID) -> Optional[Bundle]:
    return await db.get(Bundle, bundle_id)


async def get_deployable_bundle(
    db: AsyncSession, bundle_id: UUID, project_id: Optional[UUID] = None
) -> Bundle:
    """
    Returns the bundle if it may be dispatched to nodes.

    Raises:
        BundleUnavailableError: "not found", "revoked" or "not compiled".
    """
    bundle = await db.get(Bundle, bundle_id)
    if bundle is None or (project_id is not None and bundle.project_id != project_id):
        raise BundleUnavailableError("not found", f"Bundle {bundle_id} not found.")
    if bundle.status == BundleStatus.REVOKED:
        raise BundleUnavailableError("revoked", f"Bundle {bundle_id} has been revoked.")
    if bundle.status != BundleStatus.COMPILED:
        raise BundleUnavailableError(
            "not compiled", f"Bundle {bundle_id} is {bundle.status.value}."
        )
    return bundle
