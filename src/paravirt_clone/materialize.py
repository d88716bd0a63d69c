from __future__ import annotations

from typing import Mapping
import logging
import threading
import uuid

from .config import CloneConfig
from .errors import BindTimeoutError
from .k8s import ClusterApi, ConflictPolicy, ObjectKind, create_object
from .models import VolumeClaimManifest, VolumeManifest
from .polling import wait_until

logger = logging.getLogger(__name__)

VOLUME_NAME_PREFIX = "pvc-"


class GuestVolumeMaterializer:
    """Statically provision a guest PV/PVC pair backed by a supervisor PVC."""

    def __init__(self, *, api: ClusterApi, config: CloneConfig) -> None:
        self.api = api
        self.config = config

    def materialize(
        self,
        *,
        origin_namespace: str,
        origin_name: str,
        target_claim: VolumeClaimManifest,
        relocated_labels: Mapping[str, str],
        cancel_event: threading.Event | None = None,
    ) -> tuple[VolumeManifest, VolumeClaimManifest]:
        volume = self.create_volume(
            origin_namespace=origin_namespace,
            origin_name=origin_name,
            target_claim=target_claim,
        )
        claim = self.create_claim(
            origin_namespace=origin_namespace,
            origin_name=origin_name,
            target_claim=target_claim,
            relocated_labels=relocated_labels,
            volume_name=volume.name,
        )
        bound = self.wait_for_bound(claim, cancel_event=cancel_event)
        logger.info("PVC %s/%s is bound to PV %s in the guest cluster", bound.namespace, bound.name, volume.name)
        return volume, bound

    def create_volume(
        self,
        *,
        origin_namespace: str,
        origin_name: str,
        target_claim: VolumeClaimManifest,
    ) -> VolumeManifest:
        existing = self._find_volume(origin_namespace=origin_namespace, origin_name=origin_name, handle=target_claim.name)
        if existing is not None:
            logger.info("PV %s already points at supervisor PVC %s, reusing", existing.name, target_claim.name)
            return existing

        capacity = dict(target_claim.capacity)
        if not capacity and "storage" in target_claim.resource_requests:
            capacity = {"storage": target_claim.resource_requests["storage"]}
        volume = VolumeManifest(
            name=f"{VOLUME_NAME_PREFIX}{uuid.uuid4()}",
            access_modes=target_claim.access_modes,
            capacity=capacity,
            claim_namespace=origin_namespace,
            claim_name=origin_name,
            driver=self.config.provisioner_name,
            volume_handle=target_claim.name,
        )
        stored, created = create_object(
            self.api,
            ObjectKind.VOLUME,
            volume.to_kubernetes(),
            conflict_policy=ConflictPolicy.REUSE,
        )
        if created:
            logger.info("PV %s saved in the guest cluster", volume.name)
        return VolumeManifest.from_manifest(stored)

    def create_claim(
        self,
        *,
        origin_namespace: str,
        origin_name: str,
        target_claim: VolumeClaimManifest,
        relocated_labels: Mapping[str, str],
        volume_name: str,
    ) -> VolumeClaimManifest:
        claim = VolumeClaimManifest(
            name=origin_name,
            namespace=origin_namespace,
            access_modes=target_claim.access_modes,
            resource_requests=dict(target_claim.resource_requests),
            volume_mode=target_claim.volume_mode,
            labels=dict(relocated_labels),
            volume_name=volume_name,
        )
        stored, created = create_object(
            self.api,
            ObjectKind.VOLUME_CLAIM,
            claim.to_kubernetes(),
            conflict_policy=ConflictPolicy.REUSE,
        )
        result = VolumeClaimManifest.from_manifest(stored)
        if created:
            logger.info("PVC %s/%s saved in the guest cluster", result.namespace, result.name)
        elif result.volume_name and result.volume_name != volume_name:
            logger.warning(
                "Existing PVC %s/%s references PV %s instead of %s",
                result.namespace,
                result.name,
                result.volume_name,
                volume_name,
            )
        return result

    def wait_for_bound(
        self,
        claim: VolumeClaimManifest,
        *,
        cancel_event: threading.Event | None = None,
    ) -> VolumeClaimManifest:
        last_phase = claim.phase or "Unknown"

        def _probe() -> VolumeClaimManifest | None:
            nonlocal last_phase
            current = VolumeClaimManifest.from_manifest(
                self.api.get(ObjectKind.VOLUME_CLAIM, claim.namespace, claim.name)
            )
            last_phase = current.phase or "Unknown"
            return current if current.bound else None

        def _timeout() -> Exception:
            return BindTimeoutError(
                f"pvc {claim.namespace}/{claim.name} did not become Bound within "
                f"{self.config.bind_timeout_seconds:g}s (last observed phase={last_phase})"
            )

        return wait_until(
            _probe,
            description=f"PVC {claim.namespace}/{claim.name} to bind",
            interval_seconds=self.config.bind_poll_interval_seconds,
            timeout_seconds=self.config.bind_timeout_seconds,
            on_timeout=_timeout,
            cancel_event=cancel_event,
        )

    def _find_volume(self, *, origin_namespace: str, origin_name: str, handle: str) -> VolumeManifest | None:
        for manifest in self.api.list(ObjectKind.VOLUME):
            volume = VolumeManifest.from_manifest(manifest)
            if (
                volume.driver == self.config.provisioner_name
                and volume.volume_handle == handle
                and volume.claim_namespace == origin_namespace
                and volume.claim_name == origin_name
            ):
                return volume
        return None
