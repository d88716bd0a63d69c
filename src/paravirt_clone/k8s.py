from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
import logging
import os
import tempfile
from typing import Any, Callable, Protocol, TypeVar

from kubernetes import client, config
from kubernetes.client import ApiException

from .errors import (
    ClusterApiError,
    ObjectAlreadyExistsError,
    ObjectConflictError,
    ObjectFetchError,
    ObjectNotFoundError,
    ObjectPersistError,
)
from .models import CLONE_API_GROUP, CLONE_API_VERSION

logger = logging.getLogger(__name__)

CLONE_PLURAL = "clonefromsnapshots"
BACKUP_REPOSITORY_PLURAL = "backuprepositories"
T = TypeVar("T")


class KubernetesAuthenticationError(RuntimeError):
    """Raised when Kubernetes authentication configuration fails."""


class ObjectKind(str, Enum):
    VOLUME = "PersistentVolume"
    VOLUME_CLAIM = "PersistentVolumeClaim"
    CLONE_REQUEST = "CloneFromSnapshot"
    BACKUP_REPOSITORY = "BackupRepository"

    @property
    def namespaced(self) -> bool:
        return self in {ObjectKind.VOLUME_CLAIM, ObjectKind.CLONE_REQUEST}


class ConflictPolicy(str, Enum):
    REUSE = "reuse"
    FAIL = "fail"


class ClusterApi(Protocol):
    """Object access the clone workflow needs from one cluster.

    Objects travel as camelCase manifests (``dict``), the same shape the API
    server speaks, so core and custom resources are handled uniformly.
    """

    def get(self, kind: ObjectKind, namespace: str | None, name: str) -> dict[str, Any]: ...

    def create(self, kind: ObjectKind, body: Any) -> dict[str, Any]: ...

    def update_status(self, kind: ObjectKind, body: dict[str, Any]) -> dict[str, Any]: ...

    def list(self, kind: ObjectKind, namespace: str | None = None) -> list[dict[str, Any]]: ...


@dataclass(frozen=True)
class KubernetesClients:
    api_client: client.ApiClient
    core_api: client.CoreV1Api
    custom_api: client.CustomObjectsApi


def persist_kubeconfig_content(kubeconfig_content: str) -> str:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as handle:
        handle.write(kubeconfig_content)
        path = Path(handle.name)
    os.chmod(path, 0o600)
    return str(path)


def load_kubernetes_clients(
    *,
    kubeconfig_path: str | None,
    context: str | None,
    in_cluster: bool,
) -> KubernetesClients:
    # Each cluster gets its own ApiClient; the global default configuration is never touched.
    expanded = _expand_kubeconfig_path(kubeconfig_path)
    try:
        if in_cluster:
            configuration = client.Configuration()
            config.load_incluster_config(client_configuration=configuration)
            api_client = client.ApiClient(configuration)
        else:
            api_client = config.new_client_from_config(config_file=expanded, context=context)
    except Exception as error:  # pylint: disable=broad-except
        raise KubernetesAuthenticationError(
            _format_authentication_error(
                in_cluster=in_cluster,
                kubeconfig_path=expanded,
                context=context,
                error=error,
            )
        ) from error

    return KubernetesClients(
        api_client=api_client,
        core_api=client.CoreV1Api(api_client),
        custom_api=client.CustomObjectsApi(api_client),
    )


class KubernetesClusterApi:
    def __init__(self, clients: KubernetesClients) -> None:
        self.clients = clients

    def get(self, kind: ObjectKind, namespace: str | None, name: str) -> dict[str, Any]:
        core_api = self.clients.core_api
        custom_api = self.clients.custom_api
        if kind is ObjectKind.VOLUME:
            func: Callable[[], Any] = lambda: core_api.read_persistent_volume(name=name)
        elif kind is ObjectKind.VOLUME_CLAIM:
            func = lambda: core_api.read_namespaced_persistent_volume_claim(name=name, namespace=namespace)
        elif kind is ObjectKind.CLONE_REQUEST:
            func = lambda: custom_api.get_namespaced_custom_object(
                group=CLONE_API_GROUP,
                version=CLONE_API_VERSION,
                namespace=namespace,
                plural=CLONE_PLURAL,
                name=name,
            )
        else:
            func = lambda: custom_api.get_cluster_custom_object(
                group=CLONE_API_GROUP,
                version=CLONE_API_VERSION,
                plural=BACKUP_REPOSITORY_PLURAL,
                name=name,
            )
        return self._serialize(
            _call_cluster_api(operation="get", kind=kind, namespace=namespace, name=name, func=func)
        )

    def create(self, kind: ObjectKind, body: Any) -> dict[str, Any]:
        manifest = self._serialize(body)
        metadata = manifest.get("metadata") or {}
        namespace = metadata.get("namespace")
        name = metadata.get("name")
        core_api = self.clients.core_api
        custom_api = self.clients.custom_api
        if kind is ObjectKind.VOLUME:
            func: Callable[[], Any] = lambda: core_api.create_persistent_volume(body=body)
        elif kind is ObjectKind.VOLUME_CLAIM:
            func = lambda: core_api.create_namespaced_persistent_volume_claim(namespace=namespace, body=body)
        elif kind is ObjectKind.CLONE_REQUEST:
            func = lambda: custom_api.create_namespaced_custom_object(
                group=CLONE_API_GROUP,
                version=CLONE_API_VERSION,
                namespace=namespace,
                plural=CLONE_PLURAL,
                body=manifest,
            )
        else:
            raise ValueError(f"creating {kind.value} objects is not supported")
        return self._serialize(
            _call_cluster_api(operation="create", kind=kind, namespace=namespace, name=name, func=func)
        )

    def update_status(self, kind: ObjectKind, body: dict[str, Any]) -> dict[str, Any]:
        metadata = body.get("metadata") or {}
        namespace = metadata.get("namespace")
        name = metadata.get("name")
        core_api = self.clients.core_api
        custom_api = self.clients.custom_api
        if kind is ObjectKind.CLONE_REQUEST:
            func: Callable[[], Any] = lambda: custom_api.replace_namespaced_custom_object_status(
                group=CLONE_API_GROUP,
                version=CLONE_API_VERSION,
                namespace=namespace,
                plural=CLONE_PLURAL,
                name=name,
                body=body,
            )
        elif kind is ObjectKind.VOLUME_CLAIM:
            func = lambda: core_api.replace_namespaced_persistent_volume_claim_status(
                name=name,
                namespace=namespace,
                body=body,
            )
        else:
            raise ValueError(f"status updates for {kind.value} objects are not supported")
        return self._serialize(
            _call_cluster_api(operation="update status of", kind=kind, namespace=namespace, name=name, func=func)
        )

    def list(self, kind: ObjectKind, namespace: str | None = None) -> list[dict[str, Any]]:
        core_api = self.clients.core_api
        custom_api = self.clients.custom_api
        if kind is ObjectKind.VOLUME:
            func: Callable[[], Any] = lambda: core_api.list_persistent_volume().items
        elif kind is ObjectKind.VOLUME_CLAIM:
            func = lambda: core_api.list_namespaced_persistent_volume_claim(namespace=namespace).items
        elif kind is ObjectKind.CLONE_REQUEST:
            func = lambda: custom_api.list_namespaced_custom_object(
                group=CLONE_API_GROUP,
                version=CLONE_API_VERSION,
                namespace=namespace,
                plural=CLONE_PLURAL,
            ).get("items", [])
        else:
            func = lambda: custom_api.list_cluster_custom_object(
                group=CLONE_API_GROUP,
                version=CLONE_API_VERSION,
                plural=BACKUP_REPOSITORY_PLURAL,
            ).get("items", [])
        items = _call_cluster_api(operation="list", kind=kind, namespace=namespace, name=None, func=func)
        return [self._serialize(item) for item in items or []]

    def _serialize(self, obj: Any) -> dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        return self.clients.api_client.sanitize_for_serialization(obj)


def create_object(
    api: ClusterApi,
    kind: ObjectKind,
    body: Any,
    *,
    conflict_policy: ConflictPolicy,
) -> tuple[dict[str, Any], bool]:
    """Create an object, optionally reusing one that already carries the same name.

    Returns the stored manifest and whether it was newly created.
    """
    try:
        return api.create(kind, body), True
    except ObjectAlreadyExistsError as error:
        if conflict_policy is ConflictPolicy.FAIL:
            raise
        logger.info("%s %s already exists, reusing", kind.value, _display_name(error.namespace, error.name))
        return api.get(kind, error.namespace, error.name or ""), False


def _call_cluster_api(
    *,
    operation: str,
    kind: ObjectKind,
    namespace: str | None,
    name: str | None,
    func: Callable[[], T],
) -> T:
    fetch = operation in {"get", "list"}
    error_cls: type[ClusterApiError] = ObjectFetchError if fetch else ObjectPersistError
    try:
        return func()
    except ApiException as error:
        if error.status == 404 and fetch:
            error_cls = ObjectNotFoundError
        elif error.status == 409 and operation == "create":
            error_cls = ObjectAlreadyExistsError
        elif error.status == 409:
            error_cls = ObjectConflictError
        raise error_cls(
            operation=operation,
            kind=kind.value,
            namespace=namespace,
            name=name,
            reason=error.reason or "no reason provided",
            status=error.status,
        ) from error
    except Exception as error:
        raise error_cls(
            operation=operation,
            kind=kind.value,
            namespace=namespace,
            name=name,
            reason=str(error).strip() or error.__class__.__name__,
        ) from error


def _display_name(namespace: str | None, name: str | None) -> str:
    return f"{namespace}/{name}" if namespace else (name or "<unnamed>")


def _expand_kubeconfig_path(kubeconfig_path: str | None) -> str | None:
    if kubeconfig_path is None:
        return None
    stripped = kubeconfig_path.strip()
    if not stripped:
        return None
    return str(Path(stripped).expanduser())


def _format_authentication_error(
    *,
    in_cluster: bool,
    kubeconfig_path: str | None,
    context: str | None,
    error: Exception,
) -> str:
    reason = str(error).strip() or error.__class__.__name__
    if in_cluster:
        return (
            "Kubernetes authentication setup failed while loading in-cluster service account credentials: "
            f"{reason}. Ensure the pod has a mounted service account token and Kubernetes service host "
            "environment variables."
        )

    kubeconfig_source = kubeconfig_path or "default kubeconfig search path"
    context_message = f" with context '{context}'" if context else ""
    return (
        "Kubernetes authentication setup failed while loading kubeconfig "
        f"from '{kubeconfig_source}'{context_message}: {reason}. "
        "Verify the kubeconfig path and context are valid."
    )
