# warranty_admin/models.py
import json
from enum import Enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    ForeignKey,
    Boolean,
    Text,
    Table,
    UniqueConstraint,
    Enum as SAEnum,
)
from sqlalchemy.orm import relationship

# Single shared Base so every table lives in the same metadata.
from warranty_admin.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PriceType(str, Enum):
    FIXED_AMOUNT = "FIXED_AMOUNT"
    PERCENTAGE = "PERCENTAGE"


class AssociationType(str, Enum):
    ALL_PRODUCTS = "ALL_PRODUCTS"
    UNASSIGNED_PRODUCTS = "UNASSIGNED_PRODUCTS"
    SPECIFIC_PRODUCTS = "SPECIFIC_PRODUCTS"
    SPECIFIC_COLLECTIONS = "SPECIFIC_COLLECTIONS"


class ResourceType(str, Enum):
    PRODUCT = "PRODUCT"
    COLLECTION = "COLLECTION"


# Mirrors linked to definitions; rows go away with either side.
product_definition_links = Table(
    "_ProductToWarrantyDefinition",
    Base.metadata,
    Column("A", Integer, ForeignKey("Product.id", ondelete="CASCADE"), primary_key=True),
    Column("B", Integer, ForeignKey("WarrantyDefinition.id", ondelete="CASCADE"), primary_key=True, index=True),
)

collection_definition_links = Table(
    "_CollectionToWarrantyDefinition",
    Base.metadata,
    Column("A", Integer, ForeignKey("Collection.id", ondelete="CASCADE"), primary_key=True),
    Column("B", Integer, ForeignKey("WarrantyDefinition.id", ondelete="CASCADE"), primary_key=True, index=True),
)


class WarrantyDefinition(Base):
    __tablename__ = "WarrantyDefinition"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    duration_months = Column("durationMonths", Integer, nullable=False)
    # Cents for FIXED_AMOUNT, whole percentage points for PERCENTAGE.
    price = Column(Integer, nullable=False)
    price_type = Column(
        "priceType",
        SAEnum(PriceType, name="price_type", native_enum=False, validate_strings=True),
        nullable=False,
    )
    description = Column(Text)
    association_type = Column(
        "associationType",
        SAEnum(AssociationType, name="association_type", native_enum=False, validate_strings=True),
        nullable=False,
        default=AssociationType.ALL_PRODUCTS,
    )
    _associated_product_ids = Column("associatedProductIds", Text, nullable=False, default="[]")
    _associated_collection_ids = Column("associatedCollectionIds", Text, nullable=False, default="[]")
    created_at = Column("createdAt", DateTime, nullable=False, default=_utcnow)
    updated_at = Column("updatedAt", DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    associations = relationship(
        "ProductAssociation",
        back_populates="definition",
        cascade="all, delete-orphan",
        order_by="ProductAssociation.id",
    )
    products = relationship("Product", secondary=product_definition_links, back_populates="definitions")
    collections = relationship("Collection", secondary=collection_definition_links, back_populates="definitions")

    @property
    def associated_product_ids(self):
        return json.loads(self._associated_product_ids or "[]")

    @associated_product_ids.setter
    def associated_product_ids(self, value):
        self._associated_product_ids = json.dumps(list(value or []))

    @property
    def associated_collection_ids(self):
        return json.loads(self._associated_collection_ids or "[]")

    @associated_collection_ids.setter
    def associated_collection_ids(self, value):
        self._associated_collection_ids = json.dumps(list(value or []))

    def active_resource_ids(self, resource_type: ResourceType):
        """Resource ids from the association rows, in insertion order."""
        return [
            association.shopify_resource_id
            for association in self.associations
            if association.is_active and association.resource_type == resource_type
        ]

    def __repr__(self) -> str:
        return f"<WarrantyDefinition id={self.id} name={self.name!r} type={self.association_type}>"


class ProductAssociation(Base):
    __tablename__ = "ProductAssociation"
    __table_args__ = (
        UniqueConstraint(
            "warrantyDefinitionId",
            "shopifyResourceId",
            name="ProductAssociation_warrantyDefinitionId_shopifyResourceId_key",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    warranty_definition_id = Column(
        "warrantyDefinitionId",
        Integer,
        ForeignKey("WarrantyDefinition.id", ondelete="CASCADE"),
        nullable=False,
    )
    shopify_resource_id = Column("shopifyResourceId", String(255), nullable=False)
    resource_type = Column(
        "resourceType",
        SAEnum(ResourceType, name="resource_type", native_enum=False, validate_strings=True),
        nullable=False,
    )
    is_active = Column("isActive", Boolean, nullable=False, default=True)
    created_at = Column("createdAt", DateTime, nullable=False, default=_utcnow)
    updated_at = Column("updatedAt", DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    definition = relationship("WarrantyDefinition", back_populates="associations")


class Product(Base):
    __tablename__ = "Product"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shopify_id = Column("shopifyId", String(255), unique=True, nullable=False)
    title = Column(Text, nullable=False)
    image_url = Column("imageUrl", Text)
    created_at = Column("createdAt", DateTime, nullable=False, default=_utcnow)
    updated_at = Column("updatedAt", DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    definitions = relationship("WarrantyDefinition", secondary=product_definition_links, back_populates="products")


class Collection(Base):
    __tablename__ = "Collection"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shopify_id = Column("shopifyId", String(255), unique=True, nullable=False)
    title = Column(Text, nullable=False)
    image_url = Column("imageUrl", Text)
    created_at = Column("createdAt", DateTime, nullable=False, default=_utcnow)
    updated_at = Column("updatedAt", DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    definitions = relationship("WarrantyDefinition", secondary=collection_definition_links, back_populates="collections")
