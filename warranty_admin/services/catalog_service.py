"""
Shopify catalog lookup and the local Product/Collection mirror cache.

The admin only needs three things from the catalog: a text search for the
resource picker, the full list of product ids, and the products inside a
collection. Everything goes through the Admin GraphQL endpoint.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from warranty_admin.config import Config
from warranty_admin.errors import CatalogError, StorageError
from warranty_admin.models import Collection, Product, ResourceType
from warranty_admin.observability import increment_counter, observe_latency
from warranty_admin.services.association_resolver import CatalogSnapshot

logger = logging.getLogger(__name__)

SEARCH_QUERIES = {
    ResourceType.PRODUCT: """
        query SearchProducts($first: Int!, $query: String) {
          products(first: $first, query: $query, sortKey: TITLE) {
            nodes { id title featuredImage { url } }
          }
        }
    """,
    ResourceType.COLLECTION: """
        query SearchCollections($first: Int!, $query: String) {
          collections(first: $first, query: $query, sortKey: TITLE) {
            nodes { id title image { url } }
          }
        }
    """,
}

PRODUCT_IDS_QUERY = """
    query ProductIds($first: Int!, $after: String) {
      products(first: $first, after: $after) {
        nodes { id }
        pageInfo { hasNextPage endCursor }
      }
    }
"""

COLLECTION_PRODUCTS_QUERY = """
    query CollectionProducts($id: ID!, $first: Int!, $after: String) {
      collection(id: $id) {
        products(first: $first, after: $after) {
          nodes { id }
          pageInfo { hasNextPage endCursor }
        }
      }
    }
"""


@dataclass(frozen=True)
class CatalogItem:
    id: str
    title: str
    image_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"id": self.id, "title": self.title, "imageUrl": self.image_url}


class ShopifyCatalogClient:
    """Thin wrapper over the Shopify Admin GraphQL API."""

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str = Config.SHOPIFY_API_VERSION,
        timeout: float = Config.CATALOG_TIMEOUT_SECONDS,
        page_size: int = Config.CATALOG_PAGE_SIZE,
        http: Optional[Any] = None,
    ) -> None:
        if not shop_domain or not access_token:
            raise CatalogError("Shopify catalog access is not configured")
        domain = shop_domain if shop_domain.startswith("http") else f"https://{shop_domain}"
        self.endpoint = f"{domain.rstrip('/')}/admin/api/{api_version}/graphql.json"
        self.access_token = access_token
        self.timeout = timeout
        self.page_size = page_size
        self.http = http or requests.Session()

    @classmethod
    def from_config(cls, config: type[Config] = Config, shop_domain: Optional[str] = None) -> "ShopifyCatalogClient":
        return cls(
            shop_domain=shop_domain or config.SHOPIFY_SHOP_DOMAIN,
            access_token=config.SHOPIFY_ADMIN_TOKEN,
            api_version=config.SHOPIFY_API_VERSION,
            timeout=config.CATALOG_TIMEOUT_SECONDS,
            page_size=config.CATALOG_PAGE_SIZE,
        )

    def search(self, query: str, kind: ResourceType | str, limit: int = Config.CATALOG_SEARCH_LIMIT) -> List[CatalogItem]:
        kind = ResourceType(kind)
        data = self._execute(SEARCH_QUERIES[kind], {"first": limit, "query": query or None})
        root = data.get("products" if kind == ResourceType.PRODUCT else "collections") or {}
        items = []
        for node in root.get("nodes", []):
            image = node.get("featuredImage") if kind == ResourceType.PRODUCT else node.get("image")
            items.append(
                CatalogItem(
                    id=node["id"],
                    title=node.get("title") or "",
                    image_url=(image or {}).get("url"),
                )
            )
        return items

    def list_product_ids(self) -> List[str]:
        return self._paginate(PRODUCT_IDS_QUERY, {}, lambda data: data.get("products") or {})

    def collection_product_ids(self, collection_id: str) -> List[str]:
        def _products(data: Dict[str, Any]) -> Dict[str, Any]:
            collection = data.get("collection")
            if collection is None:
                return {"nodes": [], "pageInfo": {"hasNextPage": False}}
            return collection["products"]

        return self._paginate(COLLECTION_PRODUCTS_QUERY, {"id": collection_id}, _products)

    def _paginate(self, query: str, variables: Dict[str, Any], extract) -> List[str]:
        ids: List[str] = []
        after = None
        while True:
            data = self._execute(query, {**variables, "first": self.page_size, "after": after})
            connection = extract(data)
            ids.extend(node["id"] for node in connection.get("nodes", []))
            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                return ids
            after = page_info.get("endCursor")

    def _execute(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self.access_token,
        }
        try:
            response = self.http.post(
                self.endpoint,
                json={"query": query, "variables": variables},
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            increment_counter("catalog_requests_failed_total")
            logger.error("Shopify catalog request failed: %s", exc)
            raise CatalogError("Shopify catalog request failed") from exc
        except ValueError as exc:
            increment_counter("catalog_requests_failed_total")
            raise CatalogError("Shopify catalog returned invalid JSON") from exc

        if payload.get("errors"):
            increment_counter("catalog_requests_failed_total")
            logger.warning("Shopify catalog returned errors", extra={"errors": payload["errors"]})
            raise CatalogError("Shopify catalog returned errors")
        increment_counter("catalog_requests_total")
        return payload.get("data") or {}


def build_catalog_snapshot(client, collection_ids: Iterable[str] = ()) -> CatalogSnapshot:
    """
    Build a snapshot of every product plus the membership of ``collection_ids``.

    Only the collections a caller needs are expanded, since each one costs
    at least one catalog round trip.
    """
    product_ids = client.list_product_ids()
    members = {
        collection_id: client.collection_product_ids(collection_id)
        for collection_id in dict.fromkeys(collection_ids)
    }
    return CatalogSnapshot.build(product_ids, members)


class CatalogCacheService:
    """Keeps local Product/Collection mirrors of catalog entries."""

    _MODELS = {ResourceType.PRODUCT: Product, ResourceType.COLLECTION: Collection}

    def __init__(self, db_session: Session, client=None) -> None:
        self.db = db_session
        self.client = client

    def sync(self, items: Sequence[CatalogItem], kind: ResourceType | str) -> int:
        """Upsert ``items`` by Shopify id; returns how many rows were written."""
        model = self._MODELS[ResourceType(kind)]
        if not items:
            return 0
        by_id = {item.id: item for item in items}
        try:
            existing = {
                row.shopify_id: row
                for row in self.db.query(model).filter(model.shopify_id.in_(list(by_id))).all()
            }
            for shopify_id, item in by_id.items():
                row = existing.get(shopify_id)
                if row is None:
                    row = model(shopify_id=shopify_id)
                    self.db.add(row)
                row.title = item.title
                row.image_url = item.image_url
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Catalog cache sync failed", extra={"kind": ResourceType(kind).value})
            raise StorageError("Failed to cache catalog entries") from exc
        return len(by_id)

    def search_and_cache(self, query: str, kind: ResourceType | str) -> List[CatalogItem]:
        if self.client is None:
            raise CatalogError("Shopify catalog access is not configured")
        started = time.perf_counter()
        items = self.client.search(query, kind)
        observe_latency(
            "catalog_search_latency_ms",
            (time.perf_counter() - started) * 1000,
            labels={"kind": ResourceType(kind).value},
        )
        self.sync(items, kind)
        return items

    def cached(self, kind: ResourceType | str, query: str = "") -> List[CatalogItem]:
        """Mirrors matching ``query`` by title, without a catalog call."""
        model = self._MODELS[ResourceType(kind)]
        rows = self.db.query(model)
        if query:
            rows = rows.filter(model.title.ilike(f"%{query}%"))
        return [
            CatalogItem(id=row.shopify_id, title=row.title, image_url=row.image_url)
            for row in rows.order_by(model.title).all()
        ]


__all__ = [
    "CatalogItem",
    "ShopifyCatalogClient",
    "CatalogCacheService",
    "build_catalog_snapshot",
]
