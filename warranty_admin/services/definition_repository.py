from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from warranty_admin.errors import ConflictError, NotFoundError, StorageError, ValidationError
from warranty_admin.models import (
    AssociationType,
    Collection,
    PriceType,
    Product,
    ProductAssociation,
    ResourceType,
    WarrantyDefinition,
)


@dataclass(frozen=True)
class DefinitionRecord:
    """A validated definition with its price already in storage units."""

    name: str
    duration_months: int
    price: int
    price_type: PriceType
    association_type: AssociationType
    description: Optional[str] = None
    associated_product_ids: Tuple[str, ...] = field(default_factory=tuple)
    associated_collection_ids: Tuple[str, ...] = field(default_factory=tuple)


class DefinitionRepository:
    """Persistence for warranty definitions and their association rows."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def find_by_id(self, definition_id: int) -> Optional[WarrantyDefinition]:
        try:
            return (
                self.db.query(WarrantyDefinition)
                .filter_by(id=definition_id)
                .first()
            )
        except SQLAlchemyError as exc:
            raise self._storage_failure("find", exc, definition_id=definition_id) from exc

    def list(self) -> List[WarrantyDefinition]:
        """All definitions, newest first; same-instant rows by id descending."""
        try:
            return (
                self.db.query(WarrantyDefinition)
                .order_by(desc(WarrantyDefinition.created_at), desc(WarrantyDefinition.id))
                .all()
            )
        except SQLAlchemyError as exc:
            raise self._storage_failure("list", exc) from exc

    def list_claiming_definitions(self, exclude_id: Optional[int] = None) -> List[WarrantyDefinition]:
        """Definitions that target specific products or collections."""
        query = self.db.query(WarrantyDefinition).filter(
            WarrantyDefinition.association_type.in_(
                [AssociationType.SPECIFIC_PRODUCTS, AssociationType.SPECIFIC_COLLECTIONS]
            )
        )
        if exclude_id is not None:
            query = query.filter(WarrantyDefinition.id != exclude_id)
        try:
            return query.order_by(WarrantyDefinition.id).all()
        except SQLAlchemyError as exc:
            raise self._storage_failure("list_claiming", exc) from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create(self, record: DefinitionRecord) -> WarrantyDefinition:
        self._check_association_invariant(record)
        self._check_duplicate_resources(record)

        definition = WarrantyDefinition()
        try:
            self._apply(definition, record)
            self.db.add(definition)
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise self._conflict(exc) from exc
        except (SQLAlchemyError, OverflowError) as exc:
            # sqlite3 raises a bare OverflowError for integers past 64 bits.
            self.db.rollback()
            raise self._storage_failure("create", exc) from exc

        self.logger.info(
            "Warranty definition %s created",
            definition.id,
            extra={"association_type": definition.association_type.value},
        )
        return definition

    def update(self, definition_id: int, record: DefinitionRecord) -> WarrantyDefinition:
        self._check_association_invariant(record)
        self._check_duplicate_resources(record)

        definition = self.find_by_id(definition_id)
        if definition is None:
            raise NotFoundError(definition_id)

        try:
            self._apply(definition, record)
            definition.updated_at = datetime.now(timezone.utc)
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise self._conflict(exc) from exc
        except (SQLAlchemyError, OverflowError) as exc:
            self.db.rollback()
            raise self._storage_failure("update", exc, definition_id=definition_id) from exc

        self.logger.info("Warranty definition %s updated", definition_id)
        return definition

    def delete(self, definition_id: int) -> None:
        definition = self.find_by_id(definition_id)
        if definition is None:
            raise NotFoundError(definition_id)

        try:
            self.db.delete(definition)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise self._storage_failure("delete", exc, definition_id=definition_id) from exc

        self.logger.info("Warranty definition %s deleted", definition_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _apply(self, definition: WarrantyDefinition, record: DefinitionRecord) -> None:
        definition.name = record.name
        definition.duration_months = record.duration_months
        definition.price = record.price
        definition.price_type = record.price_type
        definition.description = record.description
        definition.association_type = record.association_type
        definition.associated_product_ids = record.associated_product_ids
        definition.associated_collection_ids = record.associated_collection_ids

        wanted = [(rid, ResourceType.PRODUCT) for rid in record.associated_product_ids]
        wanted += [(rid, ResourceType.COLLECTION) for rid in record.associated_collection_ids]
        self._sync_associations(definition, wanted)

        definition.products = self._cached_mirrors(Product, record.associated_product_ids)
        definition.collections = self._cached_mirrors(Collection, record.associated_collection_ids)

    @staticmethod
    def _sync_associations(
        definition: WarrantyDefinition,
        wanted: Sequence[Tuple[str, ResourceType]],
    ) -> None:
        # Existing rows are reused so the (definition, resource) key is never
        # deleted and re-inserted within one flush.
        existing = {assoc.shopify_resource_id: assoc for assoc in definition.associations}
        kept: List[ProductAssociation] = []
        for resource_id, resource_type in wanted:
            association = existing.pop(resource_id, None)
            if association is None:
                association = ProductAssociation(shopify_resource_id=resource_id)
            association.resource_type = resource_type
            association.is_active = True
            kept.append(association)
        definition.associations = kept

    def _cached_mirrors(self, model, shopify_ids: Sequence[str]):
        if not shopify_ids:
            return []
        return (
            self.db.query(model)
            .filter(model.shopify_id.in_(list(shopify_ids)))
            .all()
        )

    @staticmethod
    def _check_association_invariant(record: DefinitionRecord) -> None:
        errors = {}
        if record.associated_product_ids and record.association_type != AssociationType.SPECIFIC_PRODUCTS:
            errors["associatedProductIds"] = "Products can only be set for SPECIFIC_PRODUCTS definitions."
        if record.associated_collection_ids and record.association_type != AssociationType.SPECIFIC_COLLECTIONS:
            errors["associatedCollectionIds"] = "Collections can only be set for SPECIFIC_COLLECTIONS definitions."
        if errors:
            raise ValidationError(errors)

    @staticmethod
    def _check_duplicate_resources(record: DefinitionRecord) -> None:
        seen = set()
        for resource_id in (*record.associated_product_ids, *record.associated_collection_ids):
            if resource_id in seen:
                raise ConflictError(f"Resource {resource_id} is already associated with this definition")
            seen.add(resource_id)

    def _conflict(self, exc: IntegrityError) -> ConflictError:
        self.logger.warning("Association uniqueness violated", extra={"detail": str(exc.orig)})
        return ConflictError("A definition with the same association already exists")

    def _storage_failure(self, operation: str, exc: Exception, **context) -> StorageError:
        self.logger.exception(
            "Warranty definition %s failed",
            operation,
            extra={"operation": operation, **context},
        )
        return StorageError(f"Failed to {operation} warranty definition")
