from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from warranty_admin.errors import ConflictError, NotFoundError, StorageError, ValidationError
from warranty_admin.models import (
    AssociationType,
    PriceType,
    Product,
    ProductAssociation,
    ResourceType,
    WarrantyDefinition,
)
from warranty_admin.observability.metrics import get_metrics_snapshot
from warranty_admin.services.definition_service import AdminContext, Operation

from conftest import definition_payload


def test_create_list_delete_end_to_end(service, db_session):
    created = service.create(definition_payload(), AdminContext(shop="demo.myshopify.com"))

    stored = db_session.query(WarrantyDefinition).filter_by(id=created.id).one()
    assert stored.price == 999
    assert stored.price_type == PriceType.FIXED_AMOUNT

    listed = service.list_definitions()
    assert listed[0].id == created.id
    assert listed[0].price == Decimal("9.99")

    assert service.delete(created.id) == created.id
    assert all(view.id != created.id for view in service.list_definitions())


def test_list_orders_newest_first_with_id_tie_break(service, db_session):
    first = service.create(definition_payload(name="First"))
    second = service.create(definition_payload(name="Second"))
    third = service.create(definition_payload(name="Third"))

    same_instant = datetime(2025, 4, 13, 12, 0, 0, tzinfo=timezone.utc)
    older = datetime(2025, 4, 1, 12, 0, 0, tzinfo=timezone.utc)
    for definition in db_session.query(WarrantyDefinition).all():
        definition.created_at = older if definition.id == third.id else same_instant
    db_session.commit()

    ordered_ids = [view.id for view in service.list_definitions()]
    assert ordered_ids == [second.id, first.id, third.id]


def test_percentage_price_is_stored_in_whole_points(service):
    view = service.create(definition_payload(priceType="PERCENTAGE", price="15.7"))
    assert view.stored_price == 15
    assert view.price == Decimal("15")
    assert view.to_dict()["displayPrice"] == "15%"


def test_specific_products_creates_association_rows(service, db_session):
    view = service.create(
        definition_payload(
            associationType="SPECIFIC_PRODUCTS",
            associatedProductIds=["gid://shopify/Product/1", "gid://shopify/Product/2"],
        )
    )

    rows = db_session.query(ProductAssociation).filter_by(warranty_definition_id=view.id).all()
    assert {row.shopify_resource_id for row in rows} == {"gid://shopify/Product/1", "gid://shopify/Product/2"}
    assert all(row.resource_type == ResourceType.PRODUCT and row.is_active for row in rows)
    assert view.associated_product_ids == ("gid://shopify/Product/1", "gid://shopify/Product/2")

    stored = db_session.query(WarrantyDefinition).filter_by(id=view.id).one()
    assert json.loads(stored._associated_product_ids) == list(view.associated_product_ids)


def test_switching_association_type_clears_previous_products(service, db_session):
    view = service.create(
        definition_payload(
            associationType="SPECIFIC_PRODUCTS",
            associatedProductIds=["gid://shopify/Product/1"],
        )
    )

    updated = service.update(
        view.id,
        definition_payload(
            associationType="SPECIFIC_COLLECTIONS",
            associatedCollectionIds=["gid://shopify/Collection/10"],
            associatedProductIds=["gid://shopify/Product/1"],
        ),
    )

    assert updated.association_type == AssociationType.SPECIFIC_COLLECTIONS
    assert updated.associated_product_ids == ()
    assert updated.associated_collection_ids == ("gid://shopify/Collection/10",)

    stored = db_session.query(WarrantyDefinition).filter_by(id=view.id).one()
    assert stored.associated_product_ids == []
    rows = db_session.query(ProductAssociation).filter_by(warranty_definition_id=view.id).all()
    assert [(row.shopify_resource_id, row.resource_type) for row in rows] == [
        ("gid://shopify/Collection/10", ResourceType.COLLECTION)
    ]


def test_all_products_to_specific_collections_keeps_products_empty(service):
    view = service.create(definition_payload(associatedProductIds=["gid://shopify/Product/9"]))
    assert view.associated_product_ids == ()

    updated = service.update(
        view.id,
        definition_payload(
            associationType="SPECIFIC_COLLECTIONS",
            associatedCollectionIds=["gid://shopify/Collection/11"],
        ),
    )
    assert updated.associated_product_ids == ()


def test_update_keeps_existing_association_rows(service, db_session):
    view = service.create(
        definition_payload(
            associationType="SPECIFIC_PRODUCTS",
            associatedProductIds=["gid://shopify/Product/1"],
        )
    )
    original_row_id = db_session.query(ProductAssociation.id).filter_by(warranty_definition_id=view.id).scalar()

    service.update(
        view.id,
        definition_payload(
            associationType="SPECIFIC_PRODUCTS",
            associatedProductIds=["gid://shopify/Product/1", "gid://shopify/Product/3"],
        ),
    )

    rows = (
        db_session.query(ProductAssociation)
        .filter_by(warranty_definition_id=view.id)
        .order_by(ProductAssociation.id)
        .all()
    )
    assert rows[0].id == original_row_id
    assert [row.shopify_resource_id for row in rows] == ["gid://shopify/Product/1", "gid://shopify/Product/3"]


def test_update_refreshes_updated_at(service, db_session):
    view = service.create(definition_payload())
    stale = datetime(2020, 1, 1)
    stored = db_session.query(WarrantyDefinition).filter_by(id=view.id).one()
    stored.updated_at = stale
    db_session.commit()

    updated = service.update(view.id, definition_payload())
    assert updated.updated_at.replace(tzinfo=None) > stale


def test_invalid_update_leaves_record_unchanged(service, db_session):
    view = service.create(definition_payload(name="Original"))

    with pytest.raises(ValidationError) as excinfo:
        service.update(view.id, definition_payload(name="", price="-5"))
    assert set(excinfo.value.field_errors) == {"name", "price"}

    db_session.expire_all()
    stored = db_session.query(WarrantyDefinition).filter_by(id=view.id).one()
    assert stored.name == "Original"
    assert stored.price == 999


def test_update_missing_definition_is_not_found(service):
    with pytest.raises(NotFoundError):
        service.update(404, definition_payload())


def test_delete_missing_definition_is_not_found(service):
    result = service.execute(Operation.DELETE, definition_id=12345)
    assert not result.success
    assert isinstance(result.error, NotFoundError)
    assert result.status_code == 404


def test_delete_cascades_association_rows(service, db_session):
    view = service.create(
        definition_payload(
            associationType="SPECIFIC_PRODUCTS",
            associatedProductIds=["gid://shopify/Product/1"],
        )
    )
    service.delete(view.id)
    assert db_session.query(ProductAssociation).count() == 0


def test_duplicate_association_is_rejected(service, db_session):
    with pytest.raises(ConflictError):
        service.create(
            definition_payload(
                associationType="SPECIFIC_PRODUCTS",
                associatedProductIds=["gid://shopify/Product/1", "gid://shopify/Product/1"],
            )
        )
    assert db_session.query(WarrantyDefinition).count() == 0


def test_names_are_not_unique(service):
    service.create(definition_payload(name="Same"))
    service.create(definition_payload(name="Same"))
    assert [view.name for view in service.list_definitions()] == ["Same", "Same"]


def test_repository_rejects_lists_that_do_not_match_association_type(service):
    from warranty_admin.services.definition_repository import DefinitionRecord

    record = DefinitionRecord(
        name="Broken",
        duration_months=12,
        price=100,
        price_type=PriceType.FIXED_AMOUNT,
        association_type=AssociationType.ALL_PRODUCTS,
        associated_product_ids=("gid://shopify/Product/1",),
    )
    with pytest.raises(ValidationError) as excinfo:
        service.repository.create(record)
    assert "associatedProductIds" in excinfo.value.field_errors


def test_cached_products_are_linked_to_definition(service, db_session):
    db_session.add(Product(shopify_id="gid://shopify/Product/1", title="Laptop"))
    db_session.commit()

    view = service.create(
        definition_payload(
            associationType="SPECIFIC_PRODUCTS",
            associatedProductIds=["gid://shopify/Product/1", "gid://shopify/Product/2"],
        )
    )
    stored = db_session.query(WarrantyDefinition).filter_by(id=view.id).one()
    assert [product.title for product in stored.products] == ["Laptop"]


def test_execute_reports_validation_errors_in_full(service):
    result = service.execute(Operation.CREATE, {"name": "", "price": "x"})
    assert not result.success
    assert result.status_code == 400
    assert {"name", "durationMonths", "priceType", "price"} <= set(result.error.field_errors)


def test_execute_rejects_unknown_operation(service):
    result = service.execute("archive")
    assert not result.success
    assert isinstance(result.error, ValidationError)


def test_execute_requires_id_for_delete(service):
    result = service.execute(Operation.DELETE)
    assert result.status_code == 400
    assert "id" in result.error.field_errors


def test_storage_failure_is_opaque(service, db_session, monkeypatch):
    def _boom():
        raise OperationalError("INSERT INTO WarrantyDefinition", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db_session, "commit", _boom)
    result = service.execute(Operation.CREATE, definition_payload())

    assert not result.success
    assert isinstance(result.error, StorageError)
    assert result.status_code == 500
    assert "disk" not in result.message


def test_operations_are_counted(service):
    service.execute(Operation.CREATE, definition_payload())
    service.execute(Operation.DELETE, definition_id=999)

    counters = get_metrics_snapshot()["counters"]
    written = counters["warranty_definitions_written_total"]
    assert written[0]["labels"] == {"operation": "create"}
    errors = counters["warranty_definition_errors_total"]
    assert errors[0]["labels"] == {"operation": "delete", "kind": "not_found"}


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"price": "1e30"}, "price"),
        ({"price": "1e999999"}, "price"),
        ({"durationMonths": "99999999999999999999"}, "durationMonths"),
    ],
)
def test_execute_rejects_out_of_range_numbers(service, db_session, overrides, field):
    result = service.execute(Operation.CREATE, definition_payload(**overrides))

    assert not result.success
    assert result.status_code == 400
    assert field in result.error.field_errors
    assert db_session.query(WarrantyDefinition).count() == 0


def test_name_with_less_than_sign_is_stored(service):
    result = service.execute(Operation.CREATE, definition_payload(name="Phones < $500"))
    assert result.success
    assert result.data.name == "Phones < $500"


def test_repository_overflow_becomes_storage_error(service, db_session):
    from warranty_admin.services.definition_repository import DefinitionRecord

    record = DefinitionRecord(
        name="Too long",
        duration_months=10**20,
        price=100,
        price_type=PriceType.FIXED_AMOUNT,
        association_type=AssociationType.ALL_PRODUCTS,
    )
    with pytest.raises(StorageError):
        service.repository.create(record)

    # The session was rolled back and still accepts writes.
    assert service.create(definition_payload()).stored_price == 999
