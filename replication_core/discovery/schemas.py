"""Schema declarations each backend installs into the cluster."""

from __future__ import annotations

from replication_core.discovery.models import Backend, SchemaRequirement

CEPH_GROUP = "replication.storage.openshift.io"
TRIDENT_GROUP = "trident.netapp.io"
POWERSTORE_GROUP = "replication.storage.dell.com"

BACKEND_SCHEMAS: dict[Backend, tuple[SchemaRequirement, ...]] = {
    Backend.CEPH: (
        SchemaRequirement(
            name=f"volumereplicationclasses.{CEPH_GROUP}",
            group=CEPH_GROUP,
            version="v1alpha1",
            kind="VolumeReplicationClass",
            required=True,
        ),
        SchemaRequirement(
            name=f"volumereplications.{CEPH_GROUP}",
            group=CEPH_GROUP,
            version="v1alpha1",
            kind="VolumeReplication",
            required=True,
        ),
    ),
    Backend.TRIDENT: (
        SchemaRequirement(
            name=f"tridentmirrorrelationships.{TRIDENT_GROUP}",
            group=TRIDENT_GROUP,
            version="v1",
            kind="TridentMirrorRelationship",
            required=True,
        ),
        SchemaRequirement(
            name=f"tridentactionmirrorupdates.{TRIDENT_GROUP}",
            group=TRIDENT_GROUP,
            version="v1",
            kind="TridentActionMirrorUpdate",
            required=False,
        ),
        SchemaRequirement(
            name=f"tridentvolumes.{TRIDENT_GROUP}",
            group=TRIDENT_GROUP,
            version="v1",
            kind="TridentVolume",
            required=True,
        ),
    ),
    Backend.POWERSTORE: (
        SchemaRequirement(
            name=f"dellcsireplicationgroups.{POWERSTORE_GROUP}",
            group=POWERSTORE_GROUP,
            version="v1",
            kind="DellCSIReplicationGroup",
            required=True,
        ),
    ),
}


def get_requirements(backend: Backend) -> tuple[SchemaRequirement, ...]:
    return BACKEND_SCHEMAS.get(backend, ())


def get_required(backend: Backend) -> list[SchemaRequirement]:
    return [r for r in get_requirements(backend) if r.required]


def get_optional(backend: Backend) -> list[SchemaRequirement]:
    return [r for r in get_requirements(backend) if not r.required]


def backend_for_schema(name: str) -> Backend | None:
    for backend, requirements in BACKEND_SCHEMAS.items():
        if any(r.name == name for r in requirements):
            return backend
    return None


def known_backends() -> list[Backend]:
    return list(BACKEND_SCHEMAS)
