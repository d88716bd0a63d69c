from __future__ import annotations

import base64

import pytest

from conftest import IVD_SNAPSHOT_ID, IVD_VOLUME_ID, guest_snapshot_id, ivd_entity_id
from paravirt_clone.errors import IdentifierDecodeError, MalformedIdentifierError
from paravirt_clone.identifiers import (
    ProtectedEntityID,
    convert_snapshot_id,
    decode_entity_id,
    decode_snapshot_id,
    encode_entity_id,
    entity_id_for_claim,
)

ENCODED_IVD_ID = (
    "aXZkOjFlNDZiYjRkLWIzZjAtNDBkNS05Y2E4LTNiYWU2ZjU5NTk1NTplYTRlMzQ3YS1iZTI5LTRlNWItYTYyNi03MjViODNmMTY4ZmM"
)


def _wrap(inner: ProtectedEntityID, levels: int) -> ProtectedEntityID:
    wrapped = inner
    for level in range(levels):
        wrapped = ProtectedEntityID(
            type_name=f"paravirt-pv{level}",
            resource_id=f"pvc-{level}",
            snapshot_id=encode_entity_id(wrapped),
        )
    return wrapped


def test_parse_with_snapshot_returns_all_components() -> None:
    entity_id = ProtectedEntityID.parse(f"ivd:{IVD_VOLUME_ID}:{IVD_SNAPSHOT_ID}")

    assert entity_id.type_name == "ivd"
    assert entity_id.resource_id == IVD_VOLUME_ID
    assert entity_id.snapshot_id == IVD_SNAPSHOT_ID
    assert entity_id.is_terminal


def test_parse_without_snapshot_leaves_snapshot_unset() -> None:
    entity_id = ProtectedEntityID.parse("pvc:gc-ns/data-pvc")

    assert entity_id.resource_id == "gc-ns/data-pvc"
    assert not entity_id.has_snapshot
    assert str(entity_id) == "pvc:gc-ns/data-pvc"


@pytest.mark.parametrize("value", ["ivd", ":volume", "ivd:", "a:b:c:d", "ivd:volume:"])
def test_parse_with_malformed_string_raises_decode_error(value: str) -> None:
    with pytest.raises(IdentifierDecodeError):
        ProtectedEntityID.parse(value)


@pytest.mark.parametrize(
    ("type_name", "resource_id", "snapshot_id"),
    [
        ("ivd", "a:b", None),
        ("ivd:x", "volume", None),
        ("ivd", "volume", "snap:shot"),
        ("ivd", "volume", ""),
    ],
)
def test_constructor_with_components_that_cannot_round_trip_raises_decode_error(
    type_name: str,
    resource_id: str,
    snapshot_id: str | None,
) -> None:
    with pytest.raises(IdentifierDecodeError):
        ProtectedEntityID(type_name=type_name, resource_id=resource_id, snapshot_id=snapshot_id)


@pytest.mark.parametrize(
    "entity_id",
    [
        ivd_entity_id(),
        ProtectedEntityID(type_name="pvc", resource_id="gc-ns/data-pvc"),
        guest_snapshot_id(),
    ],
)
def test_decode_entity_id_reverses_encode_entity_id(entity_id: ProtectedEntityID) -> None:
    assert decode_entity_id(encode_entity_id(entity_id)) == entity_id


def test_encode_entity_id_matches_unpadded_base64_wire_format() -> None:
    assert encode_entity_id(ivd_entity_id()) == ENCODED_IVD_ID
    assert "=" not in ENCODED_IVD_ID


def test_decode_entity_id_accepts_padded_input() -> None:
    padded = base64.b64encode(str(ivd_entity_id()).encode()).decode()

    assert decode_entity_id(padded) == ivd_entity_id()


def test_decode_entity_id_with_invalid_base64_raises_decode_error() -> None:
    with pytest.raises(IdentifierDecodeError, match="could not decode"):
        decode_entity_id("not base64!")


def test_decode_snapshot_id_with_terminal_id_returns_re_encoded_id() -> None:
    assert decode_snapshot_id(ENCODED_IVD_ID) == ENCODED_IVD_ID


def test_decode_snapshot_id_unwraps_nested_providers_down_to_ivd() -> None:
    source = guest_snapshot_id()

    assert decode_snapshot_id(source.snapshot_id or "") == ENCODED_IVD_ID


@pytest.mark.parametrize("levels", [2, 4, 8])
def test_decode_snapshot_id_performs_one_round_per_nesting_level(levels: int) -> None:
    encoded = encode_entity_id(_wrap(ivd_entity_id(), levels - 1))

    assert decode_snapshot_id(encoded, max_depth=levels) == ENCODED_IVD_ID
    with pytest.raises(MalformedIdentifierError):
        decode_snapshot_id(encoded, max_depth=levels - 1)


def test_decode_snapshot_id_beyond_default_depth_raises_malformed_identifier() -> None:
    encoded = encode_entity_id(_wrap(ivd_entity_id(), 20))

    with pytest.raises(MalformedIdentifierError, match="nests more than 8 levels"):
        decode_snapshot_id(encoded)


def test_decode_snapshot_id_with_non_terminal_id_without_snapshot_stops_there() -> None:
    entity_id = ProtectedEntityID(type_name="paravirt-pv", resource_id="pvc-1")

    assert decode_entity_id(decode_snapshot_id(encode_entity_id(entity_id))) == entity_id


def test_wrapped_id_returns_inner_id_for_wrapping_provider() -> None:
    source = guest_snapshot_id()

    inner = source.wrapped_id()

    assert inner is not None
    assert inner.type_name == "paravirt-pv"
    assert inner.wrapped_id() == ivd_entity_id()
    assert ivd_entity_id().wrapped_id() is None


def test_convert_snapshot_id_embeds_decoded_terminal_id() -> None:
    snapshot_id = convert_snapshot_id(guest_snapshot_id(), "svc-ns", "data-abc123")

    assert snapshot_id == f"pvc:svc-ns/data-abc123:{ENCODED_IVD_ID}"
    embedded = ProtectedEntityID.parse(snapshot_id)
    assert decode_entity_id(embedded.snapshot_id or "") == ivd_entity_id()


def test_convert_snapshot_id_without_snapshot_raises_decode_error() -> None:
    with pytest.raises(IdentifierDecodeError, match="does not reference a snapshot"):
        convert_snapshot_id(ProtectedEntityID(type_name="pvc", resource_id="gc-ns/data"), "svc-ns", "data-1")


def test_entity_id_for_claim_uses_pvc_namespace_name_form() -> None:
    assert str(entity_id_for_claim("gc-ns", "data-pvc")) == "pvc:gc-ns/data-pvc"
