from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple, Union

from sqlalchemy.orm import Session

from warranty_admin.errors import NotFoundError, ValidationError, WarrantyAdminError
from warranty_admin.models import AssociationType, PriceType, ResourceType, WarrantyDefinition
from warranty_admin.observability import increment_counter, record_event
from warranty_admin.services import pricing
from warranty_admin.services.association_resolver import AssociationResolver, CatalogSnapshot
from warranty_admin.services.definition_repository import DefinitionRecord, DefinitionRepository
from warranty_admin.services.validation import (
    RawDefinitionInput,
    ValidatedDefinitionInput,
    validate_definition,
)


class Operation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    LIST = "list"
    GET = "get"


@dataclass(frozen=True)
class AdminContext:
    """Who is calling. Already authenticated by the transport layer."""

    shop: Optional[str] = None
    user_id: Optional[str] = None
    request_id: Optional[str] = None

    def log_extra(self) -> Dict[str, Optional[str]]:
        return {"admin_shop": self.shop, "admin_user": self.user_id}


@dataclass(frozen=True)
class WarrantyDefinitionView:
    """Presentation record: price converted back to display units."""

    id: int
    name: str
    duration_months: int
    price: Decimal
    stored_price: int
    price_type: PriceType
    association_type: AssociationType
    description: Optional[str]
    associated_product_ids: Tuple[str, ...]
    associated_collection_ids: Tuple[str, ...]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, definition: WarrantyDefinition) -> "WarrantyDefinitionView":
        price_type = PriceType(definition.price_type)
        return cls(
            id=definition.id,
            name=definition.name,
            duration_months=definition.duration_months,
            price=pricing.to_display(definition.price, price_type),
            stored_price=definition.price,
            price_type=price_type,
            association_type=AssociationType(definition.association_type),
            description=definition.description,
            associated_product_ids=tuple(definition.active_resource_ids(ResourceType.PRODUCT)),
            associated_collection_ids=tuple(definition.active_resource_ids(ResourceType.COLLECTION)),
            created_at=definition.created_at,
            updated_at=definition.updated_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "durationMonths": self.duration_months,
            "price": str(self.price),
            "storedPrice": self.stored_price,
            "displayPrice": pricing.format_display(self.stored_price, self.price_type),
            "priceType": self.price_type.value,
            "associationType": self.association_type.value,
            "description": self.description,
            "associatedProductIds": list(self.associated_product_ids),
            "associatedCollectionIds": list(self.associated_collection_ids),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class OperationResult:
    success: bool
    message: str
    data: Any = None
    error: Optional[WarrantyAdminError] = None

    @property
    def status_code(self) -> int:
        return 200 if self.success else self.error.status_code


RawInput = Union[RawDefinitionInput, Mapping[str, Any], None]

_SUCCESS_MESSAGES = {
    Operation.CREATE: "Warranty definition created successfully",
    Operation.UPDATE: "Warranty definition updated successfully",
    Operation.DELETE: "Warranty definition deleted successfully",
    Operation.LIST: "Warranty definitions loaded",
    Operation.GET: "Warranty definition loaded",
}


class WarrantyDefinitionService:
    """Single entry point for warranty definition reads and writes."""

    def __init__(
        self,
        db_session: Session,
        repository: Optional[DefinitionRepository] = None,
        resolver: Optional[AssociationResolver] = None,
    ) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)
        self.repository = repository or DefinitionRepository(db_session)
        self.resolver = resolver or AssociationResolver(db_session, repository=self.repository)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def create(self, raw_input: RawInput, context: Optional[AdminContext] = None) -> WarrantyDefinitionView:
        validated = self._validate(raw_input)
        definition = self.repository.create(self._to_record(validated))
        view = WarrantyDefinitionView.from_model(definition)

        context = context or AdminContext()
        increment_counter("warranty_definitions_written_total", labels={"operation": Operation.CREATE.value})
        record_event(
            "warranty_definition_created",
            {"definition_id": view.id, "association_type": view.association_type.value, "shop": context.shop},
        )
        return view

    def update(
        self,
        definition_id: Optional[int],
        raw_input: RawInput,
        context: Optional[AdminContext] = None,
    ) -> WarrantyDefinitionView:
        definition_id = self._require_id(definition_id)
        if self.repository.find_by_id(definition_id) is None:
            raise NotFoundError(definition_id)
        # Validation happens before any write, so bad input leaves the row untouched.
        validated = self._validate(raw_input)
        definition = self.repository.update(definition_id, self._to_record(validated))
        view = WarrantyDefinitionView.from_model(definition)

        increment_counter("warranty_definitions_written_total", labels={"operation": Operation.UPDATE.value})
        self.logger.info(
            "Warranty definition %s updated",
            definition_id,
            extra=(context or AdminContext()).log_extra(),
        )
        return view

    def delete(self, definition_id: Optional[int], context: Optional[AdminContext] = None) -> int:
        definition_id = self._require_id(definition_id)
        self.repository.delete(definition_id)

        context = context or AdminContext()
        increment_counter("warranty_definitions_written_total", labels={"operation": Operation.DELETE.value})
        record_event("warranty_definition_deleted", {"definition_id": definition_id, "shop": context.shop})
        return definition_id

    def list_definitions(self, context: Optional[AdminContext] = None) -> List[WarrantyDefinitionView]:
        return [WarrantyDefinitionView.from_model(definition) for definition in self.repository.list()]

    def get(self, definition_id: Optional[int], context: Optional[AdminContext] = None) -> WarrantyDefinitionView:
        definition_id = self._require_id(definition_id)
        definition = self.repository.find_by_id(definition_id)
        if definition is None:
            raise NotFoundError(definition_id)
        return WarrantyDefinitionView.from_model(definition)

    def applies_to(self, definition_id: Optional[int], snapshot: CatalogSnapshot) -> Set[str]:
        return self.resolver.applies_to(self._require_id(definition_id), snapshot)

    def execute(
        self,
        operation: Union[Operation, str],
        raw_input: RawInput = None,
        definition_id: Optional[int] = None,
        context: Optional[AdminContext] = None,
    ) -> OperationResult:
        """
        Run one operation and fold any typed error into an ``OperationResult``.

        Validation, not-found and conflict errors are the caller's to fix;
        storage errors mean something failed server-side.
        """
        try:
            operation = Operation(operation)
        except ValueError:
            error = ValidationError({"actionType": f"Unknown operation {operation!r}"})
            return OperationResult(False, error.message, error=error)

        context = context or AdminContext()
        try:
            if operation == Operation.CREATE:
                data: Any = self.create(raw_input, context)
            elif operation == Operation.UPDATE:
                data = self.update(definition_id, raw_input, context)
            elif operation == Operation.DELETE:
                data = self.delete(definition_id, context)
            elif operation == Operation.GET:
                data = self.get(definition_id, context)
            else:
                data = self.list_definitions(context)
        except WarrantyAdminError as exc:
            increment_counter(
                "warranty_definition_errors_total",
                labels={"operation": operation.value, "kind": exc.kind},
            )
            self.logger.warning(
                "Warranty definition %s failed: %s",
                operation.value,
                exc.message,
                extra={"error_kind": exc.kind, **context.log_extra()},
            )
            return OperationResult(False, exc.message, error=exc)

        return OperationResult(True, _SUCCESS_MESSAGES[operation], data=data)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _validate(raw_input: RawInput) -> ValidatedDefinitionInput:
        raw = raw_input if isinstance(raw_input, RawDefinitionInput) else RawDefinitionInput.from_mapping(raw_input)
        validated, errors = validate_definition(raw)
        if errors:
            raise ValidationError(errors)
        return validated

    @staticmethod
    def _require_id(definition_id: Any) -> int:
        if definition_id is None or isinstance(definition_id, bool):
            raise ValidationError({"id": "Missing warranty definition id"})
        try:
            return int(definition_id)
        except (TypeError, ValueError):
            raise ValidationError({"id": "Warranty definition id must be an integer"}) from None

    @staticmethod
    def _to_record(validated: ValidatedDefinitionInput) -> DefinitionRecord:
        return DefinitionRecord(
            name=validated.name,
            duration_months=validated.duration_months,
            price=pricing.to_storage(validated.price, validated.price_type),
            price_type=validated.price_type,
            association_type=validated.association_type,
            description=validated.description,
            associated_product_ids=validated.associated_product_ids,
            associated_collection_ids=validated.associated_collection_ids,
        )


__all__ = [
    "AdminContext",
    "Operation",
    "OperationResult",
    "WarrantyDefinitionService",
    "WarrantyDefinitionView",
]
