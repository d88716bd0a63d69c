from __future__ import annotations


class ParaVirtCloneError(RuntimeError):
    """Base class for every failure raised by the clone workflow."""


class IdentifierDecodeError(ParaVirtCloneError):
    """Raised when an entity or snapshot identifier cannot be decoded."""


class MalformedIdentifierError(IdentifierDecodeError):
    """Raised when a snapshot identifier nests deeper than the decode limit."""


class ManifestDecodeError(ParaVirtCloneError):
    """Raised when serialized claim metadata is not a usable PVC manifest."""


class MissingStorageClassError(ParaVirtCloneError):
    def __init__(self, *, namespace: str, name: str) -> None:
        super().__init__(
            f"PVC {namespace}/{name} has no storageClassName; a storage class is required "
            "to provision the clone in the supervisor cluster"
        )
        self.namespace = namespace
        self.name = name


class UnsupportedEntityKindError(ParaVirtCloneError):
    def __init__(self, *, kind: str, operation: str) -> None:
        super().__init__(f"protected entity kind '{kind}' does not support {operation}")
        self.kind = kind
        self.operation = operation


class CloneFailedError(ParaVirtCloneError):
    def __init__(self, *, namespace: str, name: str, message: str = "") -> None:
        detail = f": {message.strip()}" if message and message.strip() else ""
        super().__init__(f"CloneFromSnapshot {namespace}/{name} failed in the supervisor cluster{detail}")
        self.namespace = namespace
        self.name = name
        self.message = message


class CloneCanceledError(ParaVirtCloneError):
    def __init__(self, *, namespace: str, name: str, message: str = "") -> None:
        detail = f": {message.strip()}" if message and message.strip() else ""
        super().__init__(f"CloneFromSnapshot {namespace}/{name} was canceled in the supervisor cluster{detail}")
        self.namespace = namespace
        self.name = name
        self.message = message


class PollTimeoutError(ParaVirtCloneError):
    """Raised when a bounded wait expires before its condition holds."""


class CloneTimeoutError(PollTimeoutError):
    pass


class BindTimeoutError(PollTimeoutError):
    pass


class OperationCanceledError(ParaVirtCloneError):
    """Raised when the caller's cancellation event fires during a wait."""


class ClusterApiError(ParaVirtCloneError):
    def __init__(
        self,
        *,
        operation: str,
        kind: str,
        namespace: str | None,
        name: str | None,
        reason: str,
        status: int | None = None,
    ) -> None:
        target = f"{namespace}/{name}" if namespace else (name or "<unnamed>")
        status_text = f"API status {status}" if status is not None else "no API status"
        super().__init__(f"failed to {operation} {kind} '{target}': {status_text} ({reason})")
        self.operation = operation
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.reason = reason
        self.status = status


class ObjectFetchError(ClusterApiError):
    pass


class ObjectNotFoundError(ObjectFetchError):
    pass


class ObjectPersistError(ClusterApiError):
    pass


class ObjectAlreadyExistsError(ObjectPersistError):
    pass


class ObjectConflictError(ObjectPersistError):
    """Raised when an update loses an optimistic-concurrency race."""
