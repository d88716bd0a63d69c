from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
import os

import yaml

DEFAULT_PROVISIONER_NAME = "csi.vsphere.vmware.com"


@dataclass(frozen=True)
class CloneConfig:
    supervisor_namespace: str = os.getenv("PVCLONE_SUPERVISOR_NAMESPACE", "")
    provisioner_name: str = os.getenv("PVCLONE_PROVISIONER_NAME", DEFAULT_PROVISIONER_NAME)
    clone_poll_interval_seconds: float = float(os.getenv("PVCLONE_CLONE_POLL_INTERVAL_SECONDS", "2"))
    clone_timeout_seconds: float = float(os.getenv("PVCLONE_CLONE_TIMEOUT_SECONDS", "1800"))
    bind_poll_interval_seconds: float = float(os.getenv("PVCLONE_BIND_POLL_INTERVAL_SECONDS", "2"))
    bind_timeout_seconds: float = float(os.getenv("PVCLONE_BIND_TIMEOUT_SECONDS", "180"))
    status_update_attempts: int = int(os.getenv("PVCLONE_STATUS_UPDATE_ATTEMPTS", "5"))
    repository_name_map: Mapping[str, str] = field(default_factory=dict)

    def validate(self) -> None:
        if not self.supervisor_namespace.strip():
            raise ValueError("supervisor_namespace must be set")
        for attribute in (
            "clone_poll_interval_seconds",
            "clone_timeout_seconds",
            "bind_poll_interval_seconds",
            "bind_timeout_seconds",
        ):
            if getattr(self, attribute) <= 0:
                raise ValueError(f"{attribute} must be positive")
        if self.status_update_attempts <= 0:
            raise ValueError("status_update_attempts must be positive")


def load_repository_name_map(path: str | Path) -> dict[str, str]:
    """Read a guest-to-supervisor backup repository name table from YAML.

    The file is a flat mapping, e.g. ``guest-repo: supervisor-repo``.
    """
    with Path(path).expanduser().open("r", encoding="utf-8") as handle:
        loaded = yaml.safe_load(handle)
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"repository name map at {path} must be a mapping, got {type(loaded).__name__}")
    return {str(key): str(value) for key, value in loaded.items()}


def config_from_params(params: Mapping[str, Any]) -> CloneConfig:
    defaults = CloneConfig()
    name_map: dict[str, str] = dict(params.get("repositoryNameMap") or {})
    map_path = params.get("repositoryNameMapPath")
    if map_path:
        name_map = {**load_repository_name_map(map_path), **name_map}

    config = CloneConfig(
        supervisor_namespace=str(params.get("svcNamespace") or defaults.supervisor_namespace),
        provisioner_name=str(params.get("provisionerName") or defaults.provisioner_name),
        clone_poll_interval_seconds=float(
            params.get("clonePollIntervalSeconds", defaults.clone_poll_interval_seconds)
        ),
        clone_timeout_seconds=float(params.get("cloneTimeoutSeconds", defaults.clone_timeout_seconds)),
        bind_poll_interval_seconds=float(
            params.get("bindPollIntervalSeconds", defaults.bind_poll_interval_seconds)
        ),
        bind_timeout_seconds=float(params.get("bindTimeoutSeconds", defaults.bind_timeout_seconds)),
        status_update_attempts=int(params.get("statusUpdateAttempts", defaults.status_update_attempts)),
        repository_name_map=name_map,
    )
    config.validate()
    return config
