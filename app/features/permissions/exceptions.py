"""
Error taxonomy for the permission engine.

Every error carries a stable machine-readable ``kind`` and the HTTP status
the API layer renders it with.
"""
from collections.abc import Iterable


class PermissionControlError(Exception):
    """Base class for permission engine errors."""
    kind = "error"
    status_code = 500
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "retryable": self.retryable}


class ValidationError(PermissionControlError):
    kind = "validation_error"
    status_code = 400

    def __init__(self, message: str, fields: dict | None = None):
        super().__init__(message)
        self.fields = fields

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.fields:
            data["fields"] = self.fields
        return data


class UnknownPermissionError(ValidationError):
    kind = "unknown_permission"

    def __init__(self, keys: Iterable[str]):
        self.keys = sorted(set(keys))
        super().__init__(f"Unknown permission key(s): {', '.join(self.keys)}")


class AuthorizationError(PermissionControlError):
    kind = "authorization_error"
    status_code = 403


class ProtectedResourceError(PermissionControlError):
    kind = "protected_resource"
    status_code = 403


class ProtectedRoleError(ProtectedResourceError):
    kind = "protected_role"

    def __init__(self, role_key: str):
        self.role_key = role_key
        super().__init__(f"Role '{role_key}' is protected and cannot be modified")


class ConflictError(PermissionControlError):
    kind = "conflict"
    status_code = 409


class NotFoundError(PermissionControlError):
    kind = "not_found"
    status_code = 404


class ConsistencyError(PermissionControlError):
    """Audit append failed after a mutation; the transaction was rolled back."""
    kind = "consistency_error"
    status_code = 503
    retryable = True
