"""
Shared error types for catalog services.
"""


class ValidationIssue(ValueError):
    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        error_code: str | None = None,
        data: dict | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.error_type = error_type
        self.error_code = error_code
        self.data = data


class CatalogError(ValidationIssue):
    """Base class for recoverable catalog conditions surfaced to callers."""

    code = "catalog_error"

    def __init__(self, message: str, field: str = "unknown", data: dict | None = None):
        super().__init__(
            message,
            field=field,
            error_type=self.code,
            error_code=self.code,
            data=data,
        )


class DuplicateLabel(CatalogError):
    code = "duplicate_label"


class DuplicateTag(CatalogError):
    code = "duplicate_tag"


class PathConflict(CatalogError):
    """Raised when a path is already taken within its base or under its parent."""

    code = "path_conflict"


class CycleDetected(CatalogError):
    """Raised when a tree move or tag dependency would close a cycle."""

    code = "cycle_detected"


class SelfDependency(CatalogError):
    code = "self_dependency"


class NotFound(CatalogError):
    code = "not_found"
