from __future__ import annotations

from typing import Any
import copy
import logging

from .config import CloneConfig
from .errors import ObjectConflictError
from .k8s import ClusterApi, ObjectKind
from .models import ClonePhase, CloneRequest

logger = logging.getLogger(__name__)


class StatusPropagator:
    """Mirror a supervisor CloneFromSnapshot status onto its guest counterpart."""

    def __init__(self, *, api: ClusterApi, config: CloneConfig) -> None:
        self.api = api
        self.config = config

    def propagate_status(
        self,
        *,
        origin_namespace: str,
        origin_name: str,
        phase: ClonePhase,
        message: str,
        resource_handle: dict[str, Any] | None,
    ) -> CloneRequest:
        attempts = self.config.status_update_attempts
        attempt = 0
        while True:
            attempt += 1
            current = self.api.get(ObjectKind.CLONE_REQUEST, origin_namespace, origin_name)
            updated = copy.deepcopy(current)
            status = dict(updated.get("status") or {})
            status["phase"] = phase.value
            status["message"] = message
            status["resourceHandle"] = copy.deepcopy(resource_handle)
            updated["status"] = status
            try:
                stored = self.api.update_status(ObjectKind.CLONE_REQUEST, updated)
            except ObjectConflictError:
                if attempt >= attempts:
                    logger.error(
                        "Failed to update status of CloneFromSnapshot %s/%s to %s after %d attempts",
                        origin_namespace,
                        origin_name,
                        phase.value,
                        attempts,
                    )
                    raise
                logger.info(
                    "CloneFromSnapshot %s/%s changed while updating its status, re-fetching (attempt %d/%d)",
                    origin_namespace,
                    origin_name,
                    attempt,
                    attempts,
                )
                continue

            logger.info(
                "CloneFromSnapshot %s/%s updated successfully to phase %s",
                origin_namespace,
                origin_name,
                phase.value,
            )
            return CloneRequest.from_manifest(stored)
