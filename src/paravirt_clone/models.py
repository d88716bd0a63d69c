from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any
import base64
import binascii

from kubernetes import client

from .errors import ManifestDecodeError
from .identifiers import ProtectedEntityID

CLONE_API_GROUP = "backupdriver.cnsdp.vmware.com"
CLONE_API_VERSION = "v1alpha1"
CLONE_KIND = "CloneFromSnapshot"
CLAIM_BOUND_PHASE = "Bound"


class ClonePhase(str, Enum):
    # "New" is the wire value the clone controller uses for a pending request.
    PENDING = "New"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELING = "Canceling"
    CANCELED = "Canceled"
    RETRY = "Retry"

    @classmethod
    def parse(cls, value: str | None) -> ClonePhase:
        if not value:
            return cls.PENDING
        if value == "Pending":
            return cls.PENDING
        return cls(value)


TERMINAL_CLONE_PHASES = frozenset({ClonePhase.COMPLETED, ClonePhase.FAILED, ClonePhase.CANCELED})


@lru_cache(maxsize=1)
def _serializer() -> client.ApiClient:
    return client.ApiClient()


def to_manifest(obj: Any) -> dict[str, Any]:
    """Render a kubernetes client model (or plain dict) as a camelCase manifest."""
    rendered = _serializer().sanitize_for_serialization(obj)
    if not isinstance(rendered, dict):
        raise TypeError(f"expected a Kubernetes object, got {type(obj).__name__}")
    return rendered


def _string_map(value: Any, field_name: str = "value") -> dict[str, str]:
    return {str(key): str(item) for key, item in _mapping(value, field_name).items()}


def _mapping(value: Any, field_name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ManifestDecodeError(f"manifest field {field_name} must be a mapping, got {type(value).__name__}")
    return value


def _optional_string(section: dict[str, Any], key: str, section_name: str) -> str | None:
    value = section.get(key)
    if value is not None and not isinstance(value, str):
        raise ManifestDecodeError(
            f"manifest field {section_name}.{key} must be a string, got {type(value).__name__}"
        )
    return value


@dataclass(frozen=True)
class VolumeClaimManifest:
    name: str
    namespace: str
    access_modes: tuple[str, ...] = ()
    resource_requests: dict[str, str] = field(default_factory=dict)
    volume_mode: str | None = None
    storage_class_name: str | None = None
    labels: dict[str, str] = field(default_factory=dict)
    volume_name: str | None = None
    capacity: dict[str, str] = field(default_factory=dict)
    phase: str | None = None

    @classmethod
    def from_manifest(cls, manifest: Any) -> VolumeClaimManifest:
        if not isinstance(manifest, dict):
            raise ManifestDecodeError(f"PVC manifest must be a mapping, got {type(manifest).__name__}")
        metadata = _mapping(manifest.get("metadata"), "metadata")
        spec = _mapping(manifest.get("spec"), "spec")
        status = _mapping(manifest.get("status"), "status")
        resources = _mapping(spec.get("resources"), "spec.resources")
        name = _optional_string(metadata, "name", "metadata")
        if not name:
            raise ManifestDecodeError("PVC manifest is missing metadata.name")
        access_modes = spec.get("accessModes") or []
        if not isinstance(access_modes, list) or not all(isinstance(mode, str) for mode in access_modes):
            raise ManifestDecodeError("PVC manifest spec.accessModes must be a list of strings")

        return cls(
            name=name,
            namespace=_optional_string(metadata, "namespace", "metadata") or "",
            access_modes=tuple(access_modes),
            resource_requests=_string_map(resources.get("requests"), "spec.resources.requests"),
            volume_mode=_optional_string(spec, "volumeMode", "spec"),
            storage_class_name=_optional_string(spec, "storageClassName", "spec"),
            labels=_string_map(metadata.get("labels"), "metadata.labels"),
            volume_name=_optional_string(spec, "volumeName", "spec"),
            capacity=_string_map(status.get("capacity"), "status.capacity"),
            phase=_optional_string(status, "phase", "status"),
        )

    def to_kubernetes(self) -> client.V1PersistentVolumeClaim:
        return client.V1PersistentVolumeClaim(
            api_version="v1",
            kind="PersistentVolumeClaim",
            metadata=client.V1ObjectMeta(
                name=self.name,
                namespace=self.namespace or None,
                labels=dict(self.labels) or None,
            ),
            spec=client.V1PersistentVolumeClaimSpec(
                access_modes=list(self.access_modes) or None,
                resources=client.V1VolumeResourceRequirements(requests=dict(self.resource_requests) or None),
                volume_mode=self.volume_mode,
                storage_class_name=self.storage_class_name,
                volume_name=self.volume_name,
            ),
        )

    @property
    def bound(self) -> bool:
        return self.phase == CLAIM_BOUND_PHASE


@dataclass(frozen=True)
class VolumeManifest:
    name: str
    access_modes: tuple[str, ...]
    capacity: dict[str, str]
    claim_namespace: str
    claim_name: str
    driver: str
    volume_handle: str

    @classmethod
    def from_manifest(cls, manifest: dict[str, Any]) -> VolumeManifest:
        metadata = manifest.get("metadata") or {}
        spec = manifest.get("spec") or {}
        csi = spec.get("csi") or {}
        claim_ref = spec.get("claimRef") or {}
        return cls(
            name=metadata.get("name") or "",
            access_modes=tuple(spec.get("accessModes") or ()),
            capacity=_string_map(spec.get("capacity"), "spec.capacity"),
            claim_namespace=claim_ref.get("namespace") or "",
            claim_name=claim_ref.get("name") or "",
            driver=csi.get("driver") or "",
            volume_handle=csi.get("volumeHandle") or "",
        )

    def to_kubernetes(self) -> client.V1PersistentVolume:
        return client.V1PersistentVolume(
            api_version="v1",
            kind="PersistentVolume",
            metadata=client.V1ObjectMeta(name=self.name),
            spec=client.V1PersistentVolumeSpec(
                access_modes=list(self.access_modes) or None,
                capacity=dict(self.capacity) or None,
                csi=client.V1CSIPersistentVolumeSource(
                    driver=self.driver,
                    volume_handle=self.volume_handle,
                ),
                claim_ref=client.V1ObjectReference(
                    namespace=self.claim_namespace,
                    name=self.claim_name,
                ),
            ),
        )


@dataclass(frozen=True)
class CloneRequest:
    namespace: str
    name: str
    snapshot_id: str
    metadata: bytes = b""
    api_group: str = ""
    kind: str = "PersistentVolumeClaim"
    backup_repository: str = ""
    phase: ClonePhase = ClonePhase.PENDING
    message: str = ""
    resource_handle: dict[str, Any] | None = None
    resource_version: str | None = None

    @classmethod
    def from_manifest(cls, manifest: dict[str, Any]) -> CloneRequest:
        metadata = manifest.get("metadata") or {}
        spec = manifest.get("spec") or {}
        status = manifest.get("status") or {}
        encoded_metadata = spec.get("metadata") or ""
        try:
            raw_metadata = base64.b64decode(encoded_metadata, validate=True) if encoded_metadata else b""
            phase = ClonePhase.parse(status.get("phase"))
        except (binascii.Error, ValueError) as error:
            raise ManifestDecodeError(
                f"CloneFromSnapshot {metadata.get('namespace')}/{metadata.get('name')} "
                f"could not be decoded: {error}"
            ) from error

        return cls(
            namespace=metadata.get("namespace") or "",
            name=metadata.get("name") or "",
            snapshot_id=spec.get("snapshotID") or "",
            metadata=raw_metadata,
            api_group=spec.get("apiGroup") or "",
            kind=spec.get("kind") or "",
            backup_repository=spec.get("backupRepository") or "",
            phase=phase,
            message=status.get("message") or "",
            resource_handle=status.get("resourceHandle"),
            resource_version=metadata.get("resourceVersion"),
        )

    def to_manifest(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {"name": self.name, "namespace": self.namespace}
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        status: dict[str, Any] = {"phase": self.phase.value}
        if self.message:
            status["message"] = self.message
        if self.resource_handle is not None:
            status["resourceHandle"] = dict(self.resource_handle)
        return {
            "apiVersion": f"{CLONE_API_GROUP}/{CLONE_API_VERSION}",
            "kind": CLONE_KIND,
            "metadata": metadata,
            "spec": {
                "snapshotID": self.snapshot_id,
                "metadata": base64.b64encode(self.metadata).decode("ascii"),
                "apiGroup": self.api_group,
                "kind": self.kind,
                "backupRepository": self.backup_repository,
                "cloneCancel": False,
            },
            "status": status,
        }

    @property
    def terminal(self) -> bool:
        return self.phase in TERMINAL_CLONE_PHASES


@dataclass(frozen=True)
class ParaVirtProtectedEntity:
    id: ProtectedEntityID
    type_name: str


@dataclass(frozen=True)
class RestoredVolume:
    entity: ParaVirtProtectedEntity
    volume: VolumeManifest
    claim: VolumeClaimManifest
    clone_request: CloneRequest
