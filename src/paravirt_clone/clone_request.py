from __future__ import annotations

from typing import AbstractSet
import logging
import threading
import uuid

from .config import CloneConfig
from .errors import CloneCanceledError, CloneFailedError, CloneTimeoutError
from .k8s import ClusterApi, ConflictPolicy, ObjectKind, create_object
from .models import TERMINAL_CLONE_PHASES, ClonePhase, CloneRequest, VolumeClaimManifest
from .polling import wait_until
from .translate import serialize_claim

logger = logging.getLogger(__name__)

CLONE_NAME_PREFIX = "clone-"
CLAIM_API_GROUP = ""
CLAIM_KIND = "PersistentVolumeClaim"


class CloneRequestProtocol:
    def __init__(self, *, api: ClusterApi, config: CloneConfig) -> None:
        self.api = api
        self.config = config

    def request_clone(
        self,
        *,
        snapshot_id: str,
        target_manifest: VolumeClaimManifest,
        backup_repository: str,
        wait_phases: AbstractSet[ClonePhase] = TERMINAL_CLONE_PHASES,
        cancel_event: threading.Event | None = None,
    ) -> CloneRequest:
        submitted = self.submit(
            snapshot_id=snapshot_id,
            target_manifest=target_manifest,
            backup_repository=backup_repository,
        )
        clone = self.wait_for_phases(submitted, wait_phases=wait_phases, cancel_event=cancel_event)
        logger.info(
            "Finished waiting for CloneFromSnapshot %s/%s in the supervisor cluster. Phase: %s",
            clone.namespace,
            clone.name,
            clone.phase.value,
        )

        if clone.phase is ClonePhase.FAILED:
            logger.error("CloneFromSnapshot %s/%s failed in the supervisor cluster", clone.namespace, clone.name)
            raise CloneFailedError(namespace=clone.namespace, name=clone.name, message=clone.message)
        if clone.phase is ClonePhase.CANCELED:
            logger.error("CloneFromSnapshot %s/%s is canceled in the supervisor cluster", clone.namespace, clone.name)
            raise CloneCanceledError(namespace=clone.namespace, name=clone.name, message=clone.message)
        if clone.phase is not ClonePhase.COMPLETED:
            raise CloneFailedError(
                namespace=clone.namespace,
                name=clone.name,
                message=f"stopped waiting in non-terminal phase {clone.phase.value}",
            )
        return clone

    def submit(
        self,
        *,
        snapshot_id: str,
        target_manifest: VolumeClaimManifest,
        backup_repository: str,
    ) -> CloneRequest:
        request = CloneRequest(
            namespace=self.config.supervisor_namespace,
            name=f"{CLONE_NAME_PREFIX}{uuid.uuid4()}",
            snapshot_id=snapshot_id,
            metadata=serialize_claim(target_manifest),
            api_group=CLAIM_API_GROUP,
            kind=CLAIM_KIND,
            backup_repository=backup_repository,
            phase=ClonePhase.PENDING,
        )
        logger.info(
            "Creating CloneFromSnapshot %s/%s in the supervisor cluster for snapshot %s",
            request.namespace,
            request.name,
            snapshot_id,
        )
        # A name collision means two requests claim the same clone; it is never reused.
        created, _ = create_object(
            self.api,
            ObjectKind.CLONE_REQUEST,
            request.to_manifest(),
            conflict_policy=ConflictPolicy.FAIL,
        )
        return CloneRequest.from_manifest(created)

    def wait_for_phases(
        self,
        clone: CloneRequest,
        *,
        wait_phases: AbstractSet[ClonePhase],
        cancel_event: threading.Event | None = None,
    ) -> CloneRequest:
        last_phase = clone.phase

        def _probe() -> CloneRequest | None:
            nonlocal last_phase
            current = CloneRequest.from_manifest(self.api.get(ObjectKind.CLONE_REQUEST, clone.namespace, clone.name))
            last_phase = current.phase
            return current if current.phase in wait_phases else None

        def _timeout() -> Exception:
            return CloneTimeoutError(
                f"CloneFromSnapshot {clone.namespace}/{clone.name} did not reach "
                f"{_render_phases(wait_phases)} within {self.config.clone_timeout_seconds:g}s "
                f"(last observed phase={last_phase.value})"
            )

        return wait_until(
            _probe,
            description=f"CloneFromSnapshot {clone.namespace}/{clone.name}",
            interval_seconds=self.config.clone_poll_interval_seconds,
            timeout_seconds=self.config.clone_timeout_seconds,
            on_timeout=_timeout,
            cancel_event=cancel_event,
        )


def _render_phases(phases: AbstractSet[ClonePhase]) -> str:
    return ", ".join(sorted(phase.value for phase in phases))
