from __future__ import annotations

from typing import Any, Dict, Optional

from flask import Blueprint, current_app, g, jsonify, request, session

from warranty_admin.config import Config
from warranty_admin.database import get_db
from warranty_admin.errors import CatalogError, ValidationError, WarrantyAdminError
from warranty_admin.models import ResourceType
from warranty_admin.services.catalog_service import (
    CatalogCacheService,
    ShopifyCatalogClient,
    build_catalog_snapshot,
)
from warranty_admin.services.definition_service import (
    AdminContext,
    Operation,
    OperationResult,
    WarrantyDefinitionService,
)

warranties_bp = Blueprint("warranties", __name__)


def _admin_context() -> AdminContext:
    return AdminContext(
        shop=session.get("shop"),
        user_id=session.get("user_id"),
        request_id=getattr(g, "request_id", None),
    )


def _get_definition_service() -> WarrantyDefinitionService:
    return WarrantyDefinitionService(get_db())


def _get_catalog_client():
    # Tests and alternative catalogs register a client on the app.
    client = current_app.extensions.get("catalog_client")
    if client is not None:
        return client
    if not Config.SHOPIFY_ADMIN_TOKEN:
        raise CatalogError("Shopify catalog access is not configured")
    return ShopifyCatalogClient.from_config(shop_domain=session.get("shop"))


def _payload() -> Dict[str, Any]:
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def _error_response(error: WarrantyAdminError, field_values: Optional[Dict[str, Any]] = None):
    body = error.to_dict()
    if field_values is not None:
        body["fieldValues"] = field_values
    return jsonify(body), error.status_code


def _result_response(result: OperationResult, field_values: Optional[Dict[str, Any]] = None, created: bool = False):
    if not result.success:
        return _error_response(result.error, field_values)

    body: Dict[str, Any] = {"status": "success", "message": result.message}
    if isinstance(result.data, list):
        body["warrantyDefinitions"] = [view.to_dict() for view in result.data]
    elif isinstance(result.data, int):
        body["deletedId"] = result.data
    elif result.data is not None:
        body["definition"] = result.data.to_dict()
    return jsonify(body), 201 if created else 200


@warranties_bp.before_request
def _require_admin_session():
    if not session.get("shop"):
        return jsonify({"status": "error", "kind": "unauthorized", "message": "Not authenticated"}), 401
    return None


@warranties_bp.route("/api/warranties", methods=["GET"])
def list_warranties():
    result = _get_definition_service().execute(Operation.LIST, context=_admin_context())
    return _result_response(result)


@warranties_bp.route("/api/warranties", methods=["POST"])
def create_warranty():
    payload = _payload()
    result = _get_definition_service().execute(Operation.CREATE, payload, context=_admin_context())
    return _result_response(result, field_values=payload, created=result.success)


@warranties_bp.route("/api/warranties/<int:definition_id>", methods=["GET"])
def get_warranty(definition_id: int):
    result = _get_definition_service().execute(Operation.GET, definition_id=definition_id, context=_admin_context())
    return _result_response(result)


@warranties_bp.route("/api/warranties/<int:definition_id>", methods=["PUT", "PATCH"])
def update_warranty(definition_id: int):
    payload = _payload()
    result = _get_definition_service().execute(
        Operation.UPDATE,
        payload,
        definition_id=definition_id,
        context=_admin_context(),
    )
    return _result_response(result, field_values=payload)


@warranties_bp.route("/api/warranties/<int:definition_id>", methods=["DELETE"])
def delete_warranty(definition_id: int):
    result = _get_definition_service().execute(Operation.DELETE, definition_id=definition_id, context=_admin_context())
    return _result_response(result)


@warranties_bp.route("/app/warranties", methods=["POST"])
def warranty_form_action():
    """Single form endpoint: ``actionType`` selects create, update or delete."""
    form = request.form.to_dict()
    action_type = (form.pop("actionType", None) or Operation.CREATE.value).strip().lower()
    definition_id = form.pop("id", None) or None

    if action_type not in {Operation.CREATE.value, Operation.UPDATE.value, Operation.DELETE.value}:
        return _error_response(ValidationError({"actionType": f"Unsupported action {action_type!r}"}))

    result = _get_definition_service().execute(
        action_type,
        form,
        definition_id=definition_id,
        context=_admin_context(),
    )
    return _result_response(result, field_values=form if action_type != Operation.DELETE.value else None)


@warranties_bp.route("/api/warranties/<int:definition_id>/applies-to", methods=["GET"])
def warranty_applies_to(definition_id: int):
    service = _get_definition_service()
    try:
        service.get(definition_id)
        collection_ids = []
        for claimant in service.repository.list_claiming_definitions():
            collection_ids.extend(claimant.active_resource_ids(ResourceType.COLLECTION))
        snapshot = build_catalog_snapshot(_get_catalog_client(), collection_ids)
        product_ids = service.applies_to(definition_id, snapshot)
    except WarrantyAdminError as exc:
        return _error_response(exc)

    ordered = [pid for pid in snapshot.product_ids if pid in product_ids]
    return jsonify({"status": "success", "definitionId": definition_id, "productIds": ordered})


@warranties_bp.route("/api/catalog/search", methods=["GET"])
def catalog_search():
    kind = (request.args.get("kind") or ResourceType.PRODUCT.value).strip().upper()
    query = (request.args.get("q") or "").strip()
    try:
        resource_type = ResourceType(kind)
    except ValueError:
        return _error_response(ValidationError({"kind": "Kind must be PRODUCT or COLLECTION"}))

    try:
        cache = CatalogCacheService(get_db(), client=_get_catalog_client())
        items = cache.search_and_cache(query, resource_type)
    except WarrantyAdminError as exc:
        return _error_response(exc)

    return jsonify({"status": "success", "kind": resource_type.value, "items": [item.to_dict() for item in items]})
