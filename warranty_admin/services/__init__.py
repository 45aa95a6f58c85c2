from .definition_service import (
    AdminContext,
    Operation,
    OperationResult,
    WarrantyDefinitionService,
    WarrantyDefinitionView,
)
from .definition_repository import DefinitionRecord, DefinitionRepository
from .association_resolver import AssociationResolver, CatalogSnapshot, resolve_applies_to
from .catalog_service import CatalogCacheService, CatalogItem, ShopifyCatalogClient, build_catalog_snapshot
from .validation import RawDefinitionInput, ValidatedDefinitionInput, validate_definition

__all__ = [
    "AdminContext",
    "Operation",
    "OperationResult",
    "WarrantyDefinitionService",
    "WarrantyDefinitionView",
    "DefinitionRecord",
    "DefinitionRepository",
    "AssociationResolver",
    "CatalogSnapshot",
    "resolve_applies_to",
    "CatalogCacheService",
    "CatalogItem",
    "ShopifyCatalogClient",
    "build_catalog_snapshot",
    "RawDefinitionInput",
    "ValidatedDefinitionInput",
    "validate_definition",
]
