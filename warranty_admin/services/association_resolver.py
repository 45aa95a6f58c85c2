"""Work out which catalog products a warranty definition currently covers.

Overlapping definitions are not reconciled here: when several definitions
match a product they all apply, and precedence is left to the storefront.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import cached_property
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple, Union

from sqlalchemy.orm import Session

from warranty_admin.errors import NotFoundError
from warranty_admin.models import AssociationType, ResourceType, WarrantyDefinition
from warranty_admin.services.definition_repository import DefinitionRepository

_CLAIMING_TYPES = {AssociationType.SPECIFIC_PRODUCTS, AssociationType.SPECIFIC_COLLECTIONS}


@dataclass(frozen=True)
class CatalogSnapshot:
    """Point-in-time view of catalog products and collection membership."""

    product_ids: Tuple[str, ...] = ()
    collection_members: Mapping[str, FrozenSet[str]] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        product_ids: Iterable[str],
        collection_members: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> "CatalogSnapshot":
        ordered = tuple(dict.fromkeys(product_ids))
        members = {
            collection_id: frozenset(members)
            for collection_id, members in (collection_members or {}).items()
        }
        return cls(product_ids=ordered, collection_members=members)

    def has_product(self, product_id: str) -> bool:
        return product_id in self._product_set

    def members_of(self, collection_id: str) -> FrozenSet[str]:
        return self.collection_members.get(collection_id, frozenset())

    @cached_property
    def _product_set(self) -> FrozenSet[str]:
        return frozenset(self.product_ids)


@dataclass(frozen=True)
class DefinitionScope:
    """The association-relevant part of a definition."""

    definition_id: Optional[int]
    association_type: AssociationType
    product_ids: Tuple[str, ...] = ()
    collection_ids: Tuple[str, ...] = ()

    @classmethod
    def of(cls, definition: Union["DefinitionScope", WarrantyDefinition]) -> "DefinitionScope":
        if isinstance(definition, DefinitionScope):
            return definition
        return cls(
            definition_id=definition.id,
            association_type=AssociationType(definition.association_type),
            product_ids=tuple(definition.active_resource_ids(ResourceType.PRODUCT)),
            collection_ids=tuple(definition.active_resource_ids(ResourceType.COLLECTION)),
        )


DefinitionLike = Union[DefinitionScope, WarrantyDefinition]


def claimed_products(definition: DefinitionLike, snapshot: CatalogSnapshot) -> Set[str]:
    """Products a SPECIFIC_* definition targets directly; empty for the rest."""
    scope = DefinitionScope.of(definition)
    if scope.association_type == AssociationType.SPECIFIC_PRODUCTS:
        return {pid for pid in scope.product_ids if snapshot.has_product(pid)}
    if scope.association_type == AssociationType.SPECIFIC_COLLECTIONS:
        claimed: Set[str] = set()
        for collection_id in scope.collection_ids:
            claimed.update(snapshot.members_of(collection_id))
        return claimed
    return set()


def resolve_applies_to(
    definition: DefinitionLike,
    snapshot: CatalogSnapshot,
    siblings: Iterable[DefinitionLike] = (),
) -> Set[str]:
    scope = DefinitionScope.of(definition)

    if scope.association_type == AssociationType.ALL_PRODUCTS:
        return set(snapshot.product_ids)

    if scope.association_type == AssociationType.UNASSIGNED_PRODUCTS:
        taken: Set[str] = set()
        for sibling in siblings:
            sibling_scope = DefinitionScope.of(sibling)
            if scope.definition_id is not None and sibling_scope.definition_id == scope.definition_id:
                continue
            if sibling_scope.association_type in _CLAIMING_TYPES:
                taken.update(claimed_products(sibling_scope, snapshot))
        return {pid for pid in snapshot.product_ids if pid not in taken}

    # SPECIFIC_PRODUCTS drops stale ids; SPECIFIC_COLLECTIONS unions members.
    return claimed_products(scope, snapshot)


class AssociationResolver:
    """Resolves stored definitions against a catalog snapshot."""

    def __init__(self, db_session: Session, repository: Optional[DefinitionRepository] = None) -> None:
        self.db = db_session
        self.repository = repository or DefinitionRepository(db_session)
        self.logger = logging.getLogger(__name__)

    def applies_to(self, definition_id: int, snapshot: CatalogSnapshot) -> Set[str]:
        # Target and siblings are read in the session's current transaction.
        definition = self.repository.find_by_id(definition_id)
        if definition is None:
            raise NotFoundError(definition_id)

        siblings: List[WarrantyDefinition] = []
        if definition.association_type == AssociationType.UNASSIGNED_PRODUCTS:
            siblings = self.repository.list_claiming_definitions(exclude_id=definition_id)

        resolved = resolve_applies_to(definition, snapshot, siblings)
        self.logger.debug(
            "Resolved definition %s to %d products",
            definition_id,
            len(resolved),
        )
        return resolved

    def definitions_for_product(self, product_id: str, snapshot: CatalogSnapshot) -> List[int]:
        """Ids of every definition covering ``product_id``, newest first."""
        if not snapshot.has_product(product_id):
            return []

        scopes = [DefinitionScope.of(definition) for definition in self.repository.list()]
        claimants = [scope for scope in scopes if scope.association_type in _CLAIMING_TYPES]
        claims: Dict[Optional[int], Set[str]] = {
            scope.definition_id: claimed_products(scope, snapshot) for scope in claimants
        }

        matches: List[int] = []
        for scope in scopes:
            if scope.association_type in _CLAIMING_TYPES:
                applies = product_id in claims[scope.definition_id]
            elif scope.association_type == AssociationType.UNASSIGNED_PRODUCTS:
                applies = not any(
                    product_id in products
                    for owner, products in claims.items()
                    if owner != scope.definition_id
                )
            else:
                applies = True
            if applies:
                matches.append(scope.definition_id)
        return matches


__all__ = [
    "CatalogSnapshot",
    "DefinitionScope",
    "AssociationResolver",
    "claimed_products",
    "resolve_applies_to",
]
