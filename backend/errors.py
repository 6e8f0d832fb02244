# errors.py - Domain error taxonomy shared by the resolver, ordering engine and services
from typing import Any, Dict, Iterable, Optional


class WorkboardError(Exception):
    """Base class; carries the HTTP status the API layer maps it to"""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "detail": self.message}
        payload.update({k: v for k, v in self.details.items() if v is not None})
        return payload


class NotFound(WorkboardError):
    """Target entity, or a link of its parent chain, does not exist"""
    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, entity_id: Optional[str] = None):
        super().__init__(f"{entity.capitalize()} not found", entity=entity, entity_id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class Forbidden(WorkboardError):
    """Actor is authenticated but lacks the required permission"""
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str = "Edit access required", required: Optional[str] = None):
        super().__init__(message, required=required)
        self.required = required


class InvalidOrder(WorkboardError):
    """Reorder payload does not match the current sibling set"""
    status_code = 422
    code = "invalid_order"

    def __init__(self, missing: Iterable[str] = (), unexpected: Iterable[str] = (),
                 duplicates: Iterable[str] = ()):
        self.missing = sorted(missing)
        self.unexpected = sorted(unexpected)
        self.duplicates = sorted(duplicates)
        super().__init__(
            "Reorder must list every active sibling exactly once",
            missing=self.missing,
            unexpected=self.unexpected,
            duplicates=self.duplicates,
        )


class ConflictingPosition(WorkboardError):
    """A concurrent write invalidated a position assumption"""
    status_code = 409
    code = "conflicting_position"

    def __init__(self, scope: str, message: str = "Concurrent change to sibling order, retry"):
        super().__init__(message, scope=scope)
        self.scope = scope


class Conflict(WorkboardError):
    """Uniqueness violation outside the ordering engine (slug taken, duplicate assignment)"""
    status_code = 409
    code = "conflict"


class InvalidOperation(WorkboardError):
    status_code = 400
    code = "invalid_operation"
