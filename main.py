import logging
from contextlib import asynccontextmanager, contextmanager
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPAuthorizationCredentials
from pymongo.errors import PyMongoError

from auth import Identity, TokenVerifier, bearer_scheme, get_verifier, require_identity
from config import AppConfig, get_config
from database import Database
from errors import AuthError, InternalError, NotFoundError, register_exception_handlers
from query_builder import (
    ProductQuery,
    build_category_query,
    build_featured_query,
    build_list_query,
    build_new_arrivals_query,
    build_search_query,
)
from repository import ProductRepository
from schemas import ProductDraft, ProductPatch, RatingRequest

logger = logging.getLogger(__name__)

router = APIRouter()


# Helpers
def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    """JSON-ready copy of a stored product: ``_id`` becomes ``id``."""
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    for k, v in list(doc.items()):
        if isinstance(v, (datetime, date)):
            doc[k] = v.isoformat()
    return doc


def page_envelope(query: ProductQuery, items: List[Dict[str, Any]], total: int) -> Dict[str, Any]:
    return {
        "success": True,
        "currentPage": query.page,
        "totalPages": query.total_pages(total),
        "totalProducts": total,
        "products": [serialize_doc(p) for p in items],
    }


@contextmanager
def store_errors(message: str):
    """Report store failures as InternalError with ``message``."""
    try:
        yield
    except PyMongoError as e:
        logger.exception(f"{message}: {e}")
        raise InternalError(message) from e


def get_repository(request: Request) -> ProductRepository:
    return request.app.state.repository


def get_app_config(request: Request) -> AppConfig:
    return request.app.state.config


@router.get("/health")
def health(config: AppConfig = Depends(get_app_config)):
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": config.server.service_name,
    }


@router.post("/get-product-token")
def get_product_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    verifier: TokenVerifier = Depends(get_verifier),
):
    """Exchange a valid token for a one-hour, read-only product token."""
    if credentials is None or not credentials.credentials:
        raise AuthError("Authorization token is required")
    try:
        identity = verifier.verify(credentials.credentials)
    except AuthError:
        raise AuthError("Invalid authorization token")

    token, expires_in = verifier.mint_product_token(identity)
    return {"success": True, "token": token, "expiresIn": expires_in}


@router.post("/products", status_code=201)
def create_product(
    draft: ProductDraft,
    identity: Identity = Depends(require_identity),
    repository: ProductRepository = Depends(get_repository),
):
    with store_errors("Error creating product"):
        product = repository.create(draft)
    return {"success": True, "message": "Product created successfully", "product": serialize_doc(product)}


@router.get("/products")
def list_products(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    min_price: Optional[str] = Query(None, alias="minPrice"),
    max_price: Optional[str] = Query(None, alias="maxPrice"),
    in_stock: Optional[str] = Query(None, alias="inStock"),
    search: Optional[str] = Query(None),
    sort_field: Optional[str] = Query(None, alias="sortField"),
    sort_order: Optional[str] = Query(None, alias="sortOrder"),
    identity: Identity = Depends(require_identity),
    repository: ProductRepository = Depends(get_repository),
    config: AppConfig = Depends(get_app_config),
):
    params = {
        "page": page,
        "limit": limit,
        "category": category,
        "minPrice": min_price,
        "maxPrice": max_price,
        "inStock": in_stock,
        "search": search,
        "sortField": sort_field,
        "sortOrder": sort_order,
    }
    query = build_list_query(params, config.catalog.list_page_size)
    with store_errors("Error retrieving products"):
        items, total = repository.list_products(query)
    return page_envelope(query, items, total)


@router.get("/products/{product_id}")
def get_product(product_id: str, repository: ProductRepository = Depends(get_repository)):
    with store_errors("Error retrieving product"):
        product = repository.get_product(product_id)
    return {"success": True, "product": serialize_doc(product)}


@router.put("/products/{product_id}")
def update_product(
    product_id: str,
    patch: ProductPatch,
    identity: Identity = Depends(require_identity),
    repository: ProductRepository = Depends(get_repository),
):
    with store_errors("Error updating product"):
        product = repository.update(product_id, patch.to_update())
    return {"success": True, "message": "Product updated successfully", "product": serialize_doc(product)}


@router.delete("/products/{product_id}")
def delete_product(
    product_id: str,
    identity: Identity = Depends(require_identity),
    repository: ProductRepository = Depends(get_repository),
):
    with store_errors("Error deleting product"):
        deleted = repository.delete(product_id)
    if not deleted:
        raise NotFoundError("Product not found")
    return {"success": True, "message": "Product deleted successfully"}


@router.get("/category/{category}/products")
def list_category_products(
    category: str,
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    repository: ProductRepository = Depends(get_repository),
    config: AppConfig = Depends(get_app_config),
):
    query = build_category_query(category, {"page": page, "limit": limit}, config.catalog.category_page_size)
    with store_errors("Error retrieving products by category"):
        items, total = repository.list_products(query)
    return page_envelope(query, items, total)


@router.get("/search")
def search_products(
    q: Optional[str] = Query(None),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    repository: ProductRepository = Depends(get_repository),
    config: AppConfig = Depends(get_app_config),
):
    query = build_search_query({"q": q, "page": page, "limit": limit}, config.catalog.search_page_size)
    with store_errors("Error searching products"):
        items, total = repository.list_products(query)
    return page_envelope(query, items, total)


@router.get("/featured-products")
def featured_products(
    limit: Optional[str] = Query(None),
    repository: ProductRepository = Depends(get_repository),
    config: AppConfig = Depends(get_app_config),
):
    query = build_featured_query({"limit": limit}, config.catalog.highlight_limit)
    with store_errors("Error retrieving featured products"):
        items = repository.find_products(query)
    return {"success": True, "products": [serialize_doc(p) for p in items]}


@router.get("/new-arrivals")
def new_arrivals(
    limit: Optional[str] = Query(None),
    repository: ProductRepository = Depends(get_repository),
    config: AppConfig = Depends(get_app_config),
):
    query = build_new_arrivals_query({"limit": limit}, config.catalog.highlight_limit)
    with store_errors("Error retrieving new arrivals"):
        items = repository.find_products(query)
    return {"success": True, "products": [serialize_doc(p) for p in items]}


@router.post("/products/{product_id}/rate")
def rate_product(
    product_id: str,
    body: RatingRequest,
    identity: Identity = Depends(require_identity),
    repository: ProductRepository = Depends(get_repository),
):
    # Reviews are accepted but not stored; only the aggregate is kept.
    if body.review:
        logger.info(f"Review from user {identity.id} for {product_id} received ({len(body.review)} chars)")
    with store_errors("Error rating product"):
        product = repository.apply_rating(product_id, body.rating)
    return {"success": True, "message": "Rating submitted successfully", "newRating": product["ratings"]}


def create_app(
    config: Optional[AppConfig] = None,
    repository: Optional[ProductRepository] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Without an explicit ``repository`` the app connects to MongoDB on startup
    and closes the connection on shutdown. A failed connection aborts startup.
    """
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database = None
        if getattr(app.state, "repository", None) is None:
            database = Database(config.database)
            try:
                database.connect()
            except PyMongoError as e:
                logger.critical(f"MongoDB connection failed: {e}")
                raise
            repo = ProductRepository(database.products, config.catalog)
            repo.ensure_indexes()
            app.state.repository = repo
        try:
            yield
        finally:
            if database is not None:
                database.close()

    app = FastAPI(title="E-Mart Product Catalog API", lifespan=lifespan)
    app.state.config = config
    app.state.verifier = TokenVerifier(
        config.auth.jwt_secret,
        algorithm=config.auth.algorithm,
        product_token_ttl=config.auth.product_token_ttl,
    )
    if repository is not None:
        app.state.repository = repository

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )

    register_exception_handlers(app)
    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn

    config = get_config()
    logging.basicConfig(level=config.logging.level)
    uvicorn.run(create_app(config), host=config.server.host, port=config.server.port)
