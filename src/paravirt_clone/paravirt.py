from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Mapping
import logging
import threading

from .clone_request import CloneRequestProtocol
from .config import CloneConfig, config_from_params
from .errors import UnsupportedEntityKindError
from .identifiers import ProtectedEntityID, convert_snapshot_id, entity_id_for_claim
from .k8s import ClusterApi, KubernetesClusterApi, ObjectKind, load_kubernetes_clients, persist_kubeconfig_content
from .materialize import GuestVolumeMaterializer
from .models import ParaVirtProtectedEntity, RestoredVolume, VolumeClaimManifest, VolumeManifest
from .repository import BackupRepositoryResolver
from .status import StatusPropagator
from .translate import translate_claim

logger = logging.getLogger(__name__)

PARAVIRT_TYPE_PREFIX = "paravirt"
PARAVIRT_TYPE_SEPARATOR = "-"


class ParaVirtEntityKind(str, Enum):
    PERSISTENT_VOLUME = "pv"
    VIRTUAL_MACHINE = "vm"
    PERSISTENT_SERVICE = "ps"


class ParaVirtEntityManager(ABC):
    """Protected-entity operations for one paravirtual entity kind.

    The guest cluster is where callers live; the supervisor cluster owns the
    snapshots and performs the clone.
    """

    kind: ParaVirtEntityKind

    def __init__(self, *, guest_api: ClusterApi, supervisor_api: ClusterApi, config: CloneConfig) -> None:
        self.guest_api = guest_api
        self.supervisor_api = supervisor_api
        self.config = config

    @property
    def type_name(self) -> str:
        # e.g. "paravirt-pv"
        return f"{PARAVIRT_TYPE_PREFIX}{PARAVIRT_TYPE_SEPARATOR}{self.kind.value}"

    def get_protected_entity(self, entity_id: ProtectedEntityID) -> ParaVirtProtectedEntity:
        return ParaVirtProtectedEntity(id=entity_id, type_name=self.type_name)

    @abstractmethod
    def list_protected_entities(self) -> list[ProtectedEntityID]:
        raise NotImplementedError

    @abstractmethod
    def create_from_metadata(
        self,
        *,
        metadata: bytes,
        source_snapshot_id: ProtectedEntityID,
        clone_namespace: str,
        clone_name: str,
        backup_repository_name: str,
        cancel_event: threading.Event | None = None,
    ) -> RestoredVolume:
        raise NotImplementedError


class PersistentVolumeEntityManager(ParaVirtEntityManager):
    kind = ParaVirtEntityKind.PERSISTENT_VOLUME

    def __init__(self, *, guest_api: ClusterApi, supervisor_api: ClusterApi, config: CloneConfig) -> None:
        super().__init__(guest_api=guest_api, supervisor_api=supervisor_api, config=config)
        self.repository_resolver = BackupRepositoryResolver(guest_api, config.repository_name_map)
        self.clone_protocol = CloneRequestProtocol(api=supervisor_api, config=config)
        self.materializer = GuestVolumeMaterializer(api=guest_api, config=config)
        self.status_propagator = StatusPropagator(api=guest_api, config=config)

    def list_protected_entities(self) -> list[ProtectedEntityID]:
        entity_ids: list[ProtectedEntityID] = []
        for manifest in self.guest_api.list(ObjectKind.VOLUME):
            volume = VolumeManifest.from_manifest(manifest)
            if volume.driver != self.config.provisioner_name or not volume.name:
                continue
            entity_ids.append(ProtectedEntityID(type_name=self.type_name, resource_id=volume.name))
        return sorted(entity_ids, key=str)

    def create_from_metadata(
        self,
        *,
        metadata: bytes,
        source_snapshot_id: ProtectedEntityID,
        clone_namespace: str,
        clone_name: str,
        backup_repository_name: str,
        cancel_event: threading.Event | None = None,
    ) -> RestoredVolume:
        """Clone a supervisor snapshot into a new guest PVC described by ``metadata``.

        ``clone_namespace``/``clone_name`` identify the guest CloneFromSnapshot
        that receives the supervisor's terminal status once the guest PVC is
        bound. Objects created before a failure are left in place.
        """
        logger.info(
            "CreateFromMetadata called for source snapshot %s, CloneFromSnapshot %s/%s, backup repository %s",
            source_snapshot_id,
            clone_namespace,
            clone_name,
            backup_repository_name,
        )

        translated = translate_claim(metadata, self.config.supervisor_namespace)
        target = translated.target
        snapshot_id = convert_snapshot_id(source_snapshot_id, target.namespace, target.name)
        backup_repository = self.repository_resolver.resolve(backup_repository_name)

        clone = self.clone_protocol.request_clone(
            snapshot_id=snapshot_id,
            target_manifest=target,
            backup_repository=backup_repository,
            cancel_event=cancel_event,
        )
        logger.info("CloneFromSnapshot %s/%s is completed in the supervisor cluster", clone.namespace, clone.name)

        # Capacity is only known once the supervisor has provisioned the PVC.
        target_claim = VolumeClaimManifest.from_manifest(
            self.supervisor_api.get(ObjectKind.VOLUME_CLAIM, target.namespace, target.name)
        )
        volume, claim = self.materializer.materialize(
            origin_namespace=translated.origin_namespace,
            origin_name=translated.origin_name,
            target_claim=target_claim,
            relocated_labels=translated.relocated_labels,
            cancel_event=cancel_event,
        )

        self.status_propagator.propagate_status(
            origin_namespace=clone_namespace,
            origin_name=clone_name,
            phase=clone.phase,
            message=clone.message,
            resource_handle=clone.resource_handle,
        )

        entity = self.get_protected_entity(entity_id_for_claim(claim.namespace, claim.name))
        logger.info("CreateFromMetadata generated protected entity %s", entity.id)
        return RestoredVolume(entity=entity, volume=volume, claim=claim, clone_request=clone)


class _UnsupportedEntityManager(ParaVirtEntityManager):
    def list_protected_entities(self) -> list[ProtectedEntityID]:
        raise UnsupportedEntityKindError(kind=self.kind.value, operation="listing protected entities")

    def create_from_metadata(
        self,
        *,
        metadata: bytes,
        source_snapshot_id: ProtectedEntityID,
        clone_namespace: str,
        clone_name: str,
        backup_repository_name: str,
        cancel_event: threading.Event | None = None,
    ) -> RestoredVolume:
        raise UnsupportedEntityKindError(kind=self.kind.value, operation="clone from snapshot")


class VirtualMachineEntityManager(_UnsupportedEntityManager):
    kind = ParaVirtEntityKind.VIRTUAL_MACHINE


class PersistentServiceEntityManager(_UnsupportedEntityManager):
    kind = ParaVirtEntityKind.PERSISTENT_SERVICE


_MANAGERS: dict[ParaVirtEntityKind, type[ParaVirtEntityManager]] = {
    ParaVirtEntityKind.PERSISTENT_VOLUME: PersistentVolumeEntityManager,
    ParaVirtEntityKind.VIRTUAL_MACHINE: VirtualMachineEntityManager,
    ParaVirtEntityKind.PERSISTENT_SERVICE: PersistentServiceEntityManager,
}


def entity_manager_for_kind(
    kind: str | ParaVirtEntityKind,
    *,
    guest_api: ClusterApi,
    supervisor_api: ClusterApi,
    config: CloneConfig,
) -> ParaVirtEntityManager:
    try:
        resolved = ParaVirtEntityKind(kind)
    except ValueError as error:
        raise UnsupportedEntityKindError(kind=str(kind), operation="paravirtual protection") from error
    return _MANAGERS[resolved](guest_api=guest_api, supervisor_api=supervisor_api, config=config)


def build_entity_manager(params: Mapping[str, Any]) -> ParaVirtEntityManager:
    """Build a manager from the bootstrap parameter bag.

    Recognized keys: ``entityType``, ``kubeconfigPath``, ``context``,
    ``inCluster`` (guest cluster); ``svcKubeconfigPath`` or ``svcKubeconfig``
    (inline content), ``svcContext`` (supervisor cluster); plus everything
    :func:`config_from_params` reads.
    """
    config = config_from_params(params)
    guest_clients = load_kubernetes_clients(
        kubeconfig_path=params.get("kubeconfigPath"),
        context=params.get("context"),
        in_cluster=bool(params.get("inCluster", False)),
    )

    svc_kubeconfig_path = params.get("svcKubeconfigPath")
    if not svc_kubeconfig_path and params.get("svcKubeconfig"):
        svc_kubeconfig_path = persist_kubeconfig_content(str(params["svcKubeconfig"]))
    if not svc_kubeconfig_path:
        raise ValueError("svcKubeconfigPath or svcKubeconfig is required to reach the supervisor cluster")
    supervisor_clients = load_kubernetes_clients(
        kubeconfig_path=svc_kubeconfig_path,
        context=params.get("svcContext"),
        in_cluster=False,
    )

    return entity_manager_for_kind(
        params.get("entityType", ParaVirtEntityKind.PERSISTENT_VOLUME),
        guest_api=KubernetesClusterApi(guest_clients),
        supervisor_api=KubernetesClusterApi(supervisor_clients),
        config=config,
    )
