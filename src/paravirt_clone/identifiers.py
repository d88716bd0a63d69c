from __future__ import annotations

from dataclasses import dataclass
import base64
import binascii
import logging

from .errors import IdentifierDecodeError, MalformedIdentifierError

logger = logging.getLogger(__name__)

TERMINAL_PROVIDER_TYPE = "ivd"
CLAIM_PROVIDER_TYPE = "pvc"
MAX_SNAPSHOT_ID_DEPTH = 8
_SEPARATOR = ":"


@dataclass(frozen=True)
class ProtectedEntityID:
    """Identifier of a protected entity, optionally pinned to one of its snapshots.

    The canonical string form is ``<type>:<resource id>`` or
    ``<type>:<resource id>:<snapshot id>``. Wrapping providers store the
    base64 (unpadded) string form of another provider's id as their snapshot
    id, so ids nest across provider address spaces until the terminal
    provider is reached.

    No component may contain ``:``. A trailing empty snapshot component
    (``ivd:x:``) is rejected rather than read as an id without a snapshot.
    """

    type_name: str
    resource_id: str
    snapshot_id: str | None = None

    def __post_init__(self) -> None:
        if not self.type_name:
            raise IdentifierDecodeError("protected entity id requires a non-empty type name")
        if not self.resource_id:
            raise IdentifierDecodeError(f"protected entity id of type '{self.type_name}' requires a resource id")
        if self.snapshot_id == "":
            raise IdentifierDecodeError(
                f"protected entity id '{self.type_name}:{self.resource_id}' has an empty snapshot id"
            )
        for component in (self.type_name, self.resource_id, self.snapshot_id):
            if component is not None and _SEPARATOR in component:
                raise IdentifierDecodeError(f"protected entity id component '{component}' contains '{_SEPARATOR}'")

    @classmethod
    def parse(cls, value: str) -> ProtectedEntityID:
        components = value.split(_SEPARATOR)
        if len(components) < 2:
            raise IdentifierDecodeError(f"protected entity id '{value}' has too few components")
        if len(components) > 3:
            raise IdentifierDecodeError(f"protected entity id '{value}' has too many components")
        snapshot_id = components[2] if len(components) == 3 else None
        return cls(type_name=components[0], resource_id=components[1], snapshot_id=snapshot_id)

    def __str__(self) -> str:
        base = f"{self.type_name}{_SEPARATOR}{self.resource_id}"
        if self.snapshot_id is None:
            return base
        return f"{base}{_SEPARATOR}{self.snapshot_id}"

    @property
    def has_snapshot(self) -> bool:
        return self.snapshot_id is not None

    @property
    def is_terminal(self) -> bool:
        return self.type_name == TERMINAL_PROVIDER_TYPE

    def without_snapshot(self) -> ProtectedEntityID:
        return ProtectedEntityID(type_name=self.type_name, resource_id=self.resource_id)

    def wrapped_id(self) -> ProtectedEntityID | None:
        """Return the id nested in the snapshot id, or None for a terminal id."""
        if self.is_terminal or self.snapshot_id is None:
            return None
        return decode_entity_id(self.snapshot_id)


def encode_entity_id(entity_id: ProtectedEntityID) -> str:
    return base64.b64encode(str(entity_id).encode("utf-8")).decode("ascii").rstrip("=")


def decode_entity_id(encoded: str) -> ProtectedEntityID:
    unpadded = encoded.strip().rstrip("=")
    if not unpadded:
        raise IdentifierDecodeError("snapshot id is empty")
    try:
        raw = base64.b64decode(unpadded + "=" * (-len(unpadded) % 4), validate=True)
        text = raw.decode("utf-8")
    except (binascii.Error, ValueError) as error:
        raise IdentifierDecodeError(f"could not decode snapshot id encoded string '{encoded}': {error}") from error
    return ProtectedEntityID.parse(text)


def decode_snapshot_id(encoded: str, *, max_depth: int = MAX_SNAPSHOT_ID_DEPTH) -> str:
    """Unwrap an encoded snapshot id down to the terminal provider and re-encode it.

    Example: a ``paravirt-pv`` snapshot id wrapping
    ``ivd:1e46bb4d-b3f0-40d5-9ca8-3bae6f595955:ea4e347a-be29-4e5b-a626-725b83f168fc``
    decodes to ``aXZkOjFlNDZiYjRkLWIzZjAtNDBkNS05Y2E4LTNiYWU2ZjU5NTk1NTplYTRlMzQ3YS1iZTI5LTRlNWItYTYyNi03MjViODNmMTY4ZmM``.
    """
    if max_depth <= 0:
        raise ValueError("max_depth must be positive")
    return _decode_snapshot_id(encoded, depth=1, max_depth=max_depth)


def _decode_snapshot_id(encoded: str, *, depth: int, max_depth: int) -> str:
    if depth > max_depth:
        raise MalformedIdentifierError(
            f"snapshot id nests more than {max_depth} levels without reaching "
            f"a '{TERMINAL_PROVIDER_TYPE}' id"
        )

    decoded = decode_entity_id(encoded)
    logger.debug("Decode round %d translated snapshot id into pe-id %s", depth, decoded)
    if decoded.has_snapshot and not decoded.is_terminal:
        return _decode_snapshot_id(decoded.snapshot_id or "", depth=depth + 1, max_depth=max_depth)

    return encode_entity_id(decoded)


def convert_snapshot_id(source_id: ProtectedEntityID, target_namespace: str, target_name: str) -> str:
    """Build ``pvc:<namespace>/<name>:<encoded terminal snapshot id>`` for the supervisor clone."""
    if source_id.snapshot_id is None:
        raise IdentifierDecodeError(f"source id '{source_id}' does not reference a snapshot")
    decoded = decode_snapshot_id(source_id.snapshot_id)
    snapshot_id = f"{CLAIM_PROVIDER_TYPE}{_SEPARATOR}{target_namespace}/{target_name}{_SEPARATOR}{decoded}"
    logger.info("Constructed supervisor snapshot id %s from source id %s", snapshot_id, source_id)
    return snapshot_id


def entity_id_for_claim(namespace: str, name: str) -> ProtectedEntityID:
    return ProtectedEntityID(type_name=CLAIM_PROVIDER_TYPE, resource_id=f"{namespace}/{name}")
