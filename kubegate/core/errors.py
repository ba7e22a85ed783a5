"""kubegate exceptions for error handling."""

from typing import Any, Optional


class KubegateError(Exception):
    """Base class for all kubegate errors."""


class ManifestLoadError(KubegateError):
    """Raised when a manifest file cannot be read or parsed.

    Attributes:
        message: Description of the failure
        source: File path (within the bundle) that failed to load
    """

    def __init__(self, message: str, source: Optional[str] = None) -> None:
        super().__init__(message)
        self.source = source


class PatchApplyError(KubegateError):
    """Raised when a mutation patch cannot be applied.

    Covers unknown operation names, invalid arguments (e.g. an unknown
    resource profile) and manifests that cannot be re-serialized.

    Attributes:
        message: Description of the failure
        patch_op: The PatchOp that failed (optional)
    """

    def __init__(self, message: str, patch_op: Optional[Any] = None) -> None:
        super().__init__(message)
        self.patch_op = patch_op


class SnapshotError(KubegateError):
    """Raised when a cluster snapshot file is unreadable or malformed.

    Attributes:
        message: Description of the failure
        path: Snapshot file path
    """

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class PipelineError(KubegateError):
    """Raised when the admission pipeline cannot run to completion.

    Attributes:
        message: Description of the failure
        stage: Pipeline stage that failed ("load", "mutate", "plan", ...)
    """

    def __init__(self, message: str, stage: Optional[str] = None) -> None:
        super().__init__(message)
        self.stage = stage
