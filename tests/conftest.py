from __future__ import annotations

import copy
from typing import Any, Callable

import pytest

from paravirt_clone.config import CloneConfig
from paravirt_clone.errors import ObjectAlreadyExistsError, ObjectConflictError, ObjectNotFoundError
from paravirt_clone.identifiers import ProtectedEntityID, encode_entity_id
from paravirt_clone.k8s import ObjectKind
from paravirt_clone.models import to_manifest

IVD_VOLUME_ID = "1e46bb4d-b3f0-40d5-9ca8-3bae6f595955"
IVD_SNAPSHOT_ID = "ea4e347a-be29-4e5b-a626-725b83f168fc"


class FakeClusterApi:
    """In-memory stand-in for one cluster's API server."""

    def __init__(self) -> None:
        self.objects: dict[tuple[ObjectKind, str | None, str], dict[str, Any]] = {}
        self.calls: list[tuple[str, ObjectKind]] = []
        self.get_hooks: dict[ObjectKind, Callable[[dict[str, Any]], None]] = {}
        self.pending_status_conflicts = 0
        self._resource_version = 0

    def add(self, kind: ObjectKind, manifest: dict[str, Any]) -> dict[str, Any]:
        stored = copy.deepcopy(manifest)
        metadata = stored.setdefault("metadata", {})
        metadata["resourceVersion"] = self._next_version()
        self.objects[self._key(kind, metadata.get("namespace"), metadata["name"])] = stored
        return copy.deepcopy(stored)

    def stored(self, kind: ObjectKind, namespace: str | None, name: str) -> dict[str, Any]:
        return self.objects[self._key(kind, namespace, name)]

    def count(self, kind: ObjectKind) -> int:
        return sum(1 for key in self.objects if key[0] is kind)

    def get(self, kind: ObjectKind, namespace: str | None, name: str) -> dict[str, Any]:
        self.calls.append(("get", kind))
        key = self._key(kind, namespace, name)
        if key not in self.objects:
            raise ObjectNotFoundError(
                operation="get",
                kind=kind.value,
                namespace=namespace,
                name=name,
                reason="Not Found",
                status=404,
            )
        hook = self.get_hooks.get(kind)
        if hook is not None:
            hook(self.objects[key])
        return copy.deepcopy(self.objects[key])

    def create(self, kind: ObjectKind, body: Any) -> dict[str, Any]:
        self.calls.append(("create", kind))
        manifest = copy.deepcopy(to_manifest(body))
        metadata = manifest.setdefault("metadata", {})
        key = self._key(kind, metadata.get("namespace"), metadata["name"])
        if key in self.objects:
            raise ObjectAlreadyExistsError(
                operation="create",
                kind=kind.value,
                namespace=metadata.get("namespace"),
                name=metadata["name"],
                reason="AlreadyExists",
                status=409,
            )
        return self.add(kind, manifest)

    def update_status(self, kind: ObjectKind, body: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("update_status", kind))
        metadata = body["metadata"]
        key = self._key(kind, metadata.get("namespace"), metadata["name"])
        existing = self.objects[key]
        if self.pending_status_conflicts > 0:
            self.pending_status_conflicts -= 1
            existing["metadata"]["resourceVersion"] = self._next_version()
        if metadata.get("resourceVersion") != existing["metadata"]["resourceVersion"]:
            raise ObjectConflictError(
                operation="update status of",
                kind=kind.value,
                namespace=metadata.get("namespace"),
                name=metadata["name"],
                reason="Conflict",
                status=409,
            )
        existing["status"] = copy.deepcopy(body.get("status"))
        existing["metadata"]["resourceVersion"] = self._next_version()
        return copy.deepcopy(existing)

    def list(self, kind: ObjectKind, namespace: str | None = None) -> list[dict[str, Any]]:
        self.calls.append(("list", kind))
        return [
            copy.deepcopy(manifest)
            for (stored_kind, stored_namespace, _), manifest in self.objects.items()
            if stored_kind is kind and (namespace is None or stored_namespace == namespace)
        ]

    def _key(self, kind: ObjectKind, namespace: str | None, name: str) -> tuple[ObjectKind, str | None, str]:
        return kind, namespace if kind.namespaced else None, name

    def _next_version(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)


def ivd_entity_id() -> ProtectedEntityID:
    return ProtectedEntityID(type_name="ivd", resource_id=IVD_VOLUME_ID, snapshot_id=IVD_SNAPSHOT_ID)


def guest_snapshot_id(namespace: str = "gc-ns", name: str = "data-pvc") -> ProtectedEntityID:
    """Source id as a guest CloneFromSnapshot carries it: pvc wrapping paravirt-pv wrapping ivd."""
    paravirt = ProtectedEntityID(
        type_name="paravirt-pv",
        resource_id="pvc-15d0ac8f-418f-4e5d-99c1-b127263e2058",
        snapshot_id=encode_entity_id(ivd_entity_id()),
    )
    return ProtectedEntityID(
        type_name="pvc",
        resource_id=f"{namespace}/{name}",
        snapshot_id=encode_entity_id(paravirt),
    )


@pytest.fixture
def guest_api() -> FakeClusterApi:
    return FakeClusterApi()


@pytest.fixture
def supervisor_api() -> FakeClusterApi:
    return FakeClusterApi()


@pytest.fixture
def clone_config() -> CloneConfig:
    return CloneConfig(
        supervisor_namespace="svc-ns",
        provisioner_name="csi.vsphere.vmware.com",
        clone_poll_interval_seconds=0.01,
        clone_timeout_seconds=0.2,
        bind_poll_interval_seconds=0.01,
        bind_timeout_seconds=0.2,
        status_update_attempts=3,
    )
