# fleet_rollout_service/src/fleet_rollout_service/models/bundle.py
"""
Bundle reference model.

Bundles are produced by the external bundle compiler. This service only reads
their identity and compile status before dispatching them to nodes.
"""
from enum import Enum

from sqlalchemy import Column
from sqlalchemy import Enum as SQLAEnum
from sqlalchemy import String, Uuid

from .base import Base, TimestampMixin, UUIDMixin


class BundleStatus(str, Enum):
    PENDING = "pending"  # Uploaded, waiting for the compiler.
    COMPILING = "compiling"  # Compiler is working on it.
    COMPILED = "compiled"  # Ready to be rolled out.
    FAILED = "failed"  # Compilation failed.
    REVOKED = "revoked"  # Withdrawn; must never be dispatched again.


class Bundle(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "bundles"

    project_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    version = Column(String(100), nullable=False)
    checksum = Column(String(128), nullable=True)
    status = Column(
        SQLAEnum(
            BundleStatus,
            name="bundle_status_enum",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=BundleStatus.PENDING,
    )

    def __repr__(self):
        return f"<Bundle(id='{self.id}', version='{self.version}', status='{self.status}')>"
