from __future__ import annotations

from typing import Mapping
import logging

from .k8s import ClusterApi, ObjectKind

logger = logging.getLogger(__name__)

WITHOUT_BACKUP_REPOSITORY = "without-backup-repository"


class BackupRepositoryResolver:
    """Map a guest backup repository name to the name the supervisor knows it by."""

    def __init__(self, api: ClusterApi, name_map: Mapping[str, str] | None = None) -> None:
        self.api = api
        self.name_map = dict(name_map or {})

    def resolve(self, name: str) -> str:
        if not name or name == WITHOUT_BACKUP_REPOSITORY:
            return name

        mapped = self.name_map.get(name)
        if mapped:
            logger.info("BackupRepository %s maps to %s in the supervisor cluster by configuration", name, mapped)
            return mapped

        repository = self.api.get(ObjectKind.BACKUP_REPOSITORY, None, name)
        svc_name = repository.get("svcBackupRepositoryName") or ""
        if svc_name and svc_name != WITHOUT_BACKUP_REPOSITORY:
            logger.info("BackupRepository %s is named %s in the supervisor cluster", name, svc_name)
            return svc_name
        return name
