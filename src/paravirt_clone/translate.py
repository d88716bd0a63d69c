from __future__ import annotations

from dataclasses import dataclass, replace
import json
import logging
import uuid

import yaml

from .errors import ManifestDecodeError, MissingStorageClassError
from .models import VolumeClaimManifest, to_manifest

logger = logging.getLogger(__name__)

TARGET_NAME_PREFIX_LENGTH = 4


@dataclass(frozen=True)
class TranslatedClaim:
    target: VolumeClaimManifest
    origin_namespace: str
    origin_name: str
    relocated_labels: dict[str, str]


def parse_claim(manifest_bytes: bytes | str) -> VolumeClaimManifest:
    try:
        loaded = yaml.safe_load(manifest_bytes)
    except yaml.YAMLError as error:
        raise ManifestDecodeError(f"failed to unmarshal metadata to get PVC: {error}") from error
    return VolumeClaimManifest.from_manifest(loaded)


def translate_claim(manifest_bytes: bytes | str, target_namespace: str) -> TranslatedClaim:
    """Rewrite a guest PVC manifest into the claim to provision in the supervisor.

    The supervisor does not accept caller-chosen names, so the target name is
    the first four characters of the guest name plus a random UUID. Labels are
    handed back separately because the supervisor provisioning path drops them.
    """
    origin = parse_claim(manifest_bytes)
    if not origin.namespace:
        raise ManifestDecodeError(f"PVC {origin.name} has no metadata.namespace; the restored claim needs one")
    if not origin.storage_class_name:
        logger.error(
            "Failed to restore PVC %s/%s in the supervisor cluster because storageClassName is not set",
            origin.namespace,
            origin.name,
        )
        raise MissingStorageClassError(namespace=origin.namespace, name=origin.name)

    target_name = f"{origin.name[:TARGET_NAME_PREFIX_LENGTH]}-{uuid.uuid4()}"
    target = replace(
        origin,
        name=target_name,
        namespace=target_namespace,
        labels={},
        volume_name=None,
        capacity={},
        phase=None,
    )
    logger.info(
        "StorageClassName is %s in supervisor PVC %s/%s translated from guest PVC %s/%s",
        target.storage_class_name,
        target.namespace,
        target.name,
        origin.namespace,
        origin.name,
    )
    return TranslatedClaim(
        target=target,
        origin_namespace=origin.namespace,
        origin_name=origin.name,
        relocated_labels=dict(origin.labels),
    )


def serialize_claim(claim: VolumeClaimManifest) -> bytes:
    return json.dumps(to_manifest(claim.to_kubernetes()), sort_keys=True).encode("utf-8")
