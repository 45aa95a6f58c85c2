from __future__ import annotations

from typing import Dict, Optional


class WarrantyAdminError(Exception):
    """Base class for errors surfaced by the warranty definition services."""

    status_code = 500
    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, object]:
        return {"status": "error", "kind": self.kind, "message": self.message}


class ValidationError(WarrantyAdminError):
    """Caller input is invalid. Carries every field error found."""

    status_code = 400
    kind = "validation"

    def __init__(self, field_errors: Dict[str, str], message: str = "Validation failed") -> None:
        super().__init__(message)
        self.field_errors = dict(field_errors)

    def to_dict(self) -> Dict[str, object]:
        payload = super().to_dict()
        payload["errors"] = dict(self.field_errors)
        return payload


class NotFoundError(WarrantyAdminError):
    status_code = 404
    kind = "not_found"

    def __init__(self, definition_id: Optional[int], message: Optional[str] = None) -> None:
        super().__init__(message or f"Warranty definition {definition_id} not found")
        self.definition_id = definition_id


class ConflictError(WarrantyAdminError):
    status_code = 409
    kind = "conflict"


class StorageError(WarrantyAdminError):
    status_code = 500
    kind = "storage"


class CatalogError(WarrantyAdminError):
    """The catalog lookup collaborator failed or is not configured."""

    status_code = 502
    kind = "catalog"
