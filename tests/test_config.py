from __future__ import annotations

from pathlib import Path

import pytest

from paravirt_clone.config import CloneConfig, config_from_params, load_repository_name_map


def test_validate_requires_supervisor_namespace() -> None:
    with pytest.raises(ValueError, match="supervisor_namespace"):
        CloneConfig(supervisor_namespace="  ").validate()


@pytest.mark.parametrize(
    "field_name",
    [
        "clone_poll_interval_seconds",
        "clone_timeout_seconds",
        "bind_poll_interval_seconds",
        "bind_timeout_seconds",
        "status_update_attempts",
    ],
)
def test_validate_rejects_non_positive_bounds(field_name: str) -> None:
    with pytest.raises(ValueError, match=field_name):
        CloneConfig(supervisor_namespace="svc-ns", **{field_name: 0}).validate()


def test_load_repository_name_map_reads_flat_yaml_mapping(tmp_path: Path) -> None:
    path = tmp_path / "repositories.yaml"
    path.write_text("br-1: svc-br-1\nbr-2: svc-br-2\n")

    assert load_repository_name_map(path) == {"br-1": "svc-br-1", "br-2": "svc-br-2"}


def test_load_repository_name_map_with_empty_file_returns_empty_map(tmp_path: Path) -> None:
    path = tmp_path / "repositories.yaml"
    path.write_text("")

    assert load_repository_name_map(path) == {}


def test_load_repository_name_map_rejects_non_mapping(tmp_path: Path) -> None:
    path = tmp_path / "repositories.yaml"
    path.write_text("- br-1\n- br-2\n")

    with pytest.raises(ValueError, match="must be a mapping"):
        load_repository_name_map(path)


def test_config_from_params_reads_bootstrap_keys(tmp_path: Path) -> None:
    path = tmp_path / "repositories.yaml"
    path.write_text("br-1: svc-br-1\nbr-2: svc-br-2\n")

    config = config_from_params(
        {
            "svcNamespace": "svc-ns",
            "provisionerName": "example.csi.driver",
            "clonePollIntervalSeconds": "0.5",
            "cloneTimeoutSeconds": 60,
            "bindPollIntervalSeconds": 1,
            "bindTimeoutSeconds": 30,
            "statusUpdateAttempts": "7",
            "repositoryNameMap": {"br-2": "override"},
            "repositoryNameMapPath": str(path),
        }
    )

    assert config.supervisor_namespace == "svc-ns"
    assert config.provisioner_name == "example.csi.driver"
    assert config.clone_poll_interval_seconds == 0.5
    assert config.clone_timeout_seconds == 60
    assert config.bind_poll_interval_seconds == 1
    assert config.bind_timeout_seconds == 30
    assert config.status_update_attempts == 7
    assert config.repository_name_map == {"br-1": "svc-br-1", "br-2": "override"}


def test_config_from_params_without_namespace_fails_validation() -> None:
    with pytest.raises(ValueError, match="supervisor_namespace"):
        config_from_params({"svcNamespace": ""})
