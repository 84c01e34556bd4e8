"""Product persistence on a single MongoDB collection.

Every write touches exactly one document, so MongoDB's single-document
atomicity is the only guarantee relied on. The two read-then-write paths are
closed as follows:

* product id assignment reads the latest id and inserts; the unique index on
  ``productId`` rejects a collision and the insert is retried with a larger id.
* rating aggregation is a compare-and-set keyed on the observed
  ``ratings.count``, retried when another rating got there first.

Transient network errors are retried only for reads and for writes whose
replay leaves the same result. Inserts, deletes and rating writes run once.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, TEXT, ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import AutoReconnect, DuplicateKeyError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config import CatalogConfig
from errors import ConflictError, NotFoundError, ValidationError
from product_ids import format_product_id, next_product_id, parse_sequence, product_id_pattern
from query_builder import MAX_SKIP, ProductQuery
from schemas import IMMUTABLE_FIELDS, ProductDraft

logger = logging.getLogger(__name__)

# Fields the update path never writes.
PROTECTED_FIELDS = frozenset(IMMUTABLE_FIELDS) | {"ratings"}

# AutoReconnect also covers NetworkTimeout. Only reads and idempotent writes
# are wrapped; other writes rely on the driver's retryable writes.
transient_retry = retry(
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    stop=stop_after_attempt(3),
    retry=retry_if_exception_type(AutoReconnect),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


def utcnow() -> datetime:
    """Current UTC time truncated to the millisecond precision BSON stores."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def as_utc(value: datetime) -> datetime:
    """``value`` as an aware UTC datetime. Naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class ByBusinessId:
    """Reference by the human-readable productId."""

    product_id: str

    def filter(self) -> Dict[str, Any]:
        return {"productId": self.product_id}


@dataclass(frozen=True)
class ByInternalId:
    """Reference by the store's ObjectId."""

    object_id: ObjectId

    def filter(self) -> Dict[str, Any]:
        return {"_id": self.object_id}


ProductRef = Union[ByBusinessId, ByInternalId]


def parse_product_ref(raw: str) -> Tuple[ProductRef, ...]:
    """Candidate references for a path identifier, in lookup order.

    The business id always comes first; a string that is also a valid
    ObjectId falls back to the internal id.
    """
    refs: List[ProductRef] = [ByBusinessId(raw)]
    if ObjectId.is_valid(raw):
        refs.append(ByInternalId(ObjectId(raw)))
    return tuple(refs)


def round_rating(value: float) -> float:
    """Round half-up to one decimal place."""
    return float(Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def compute_rating(average: float, count: int, rating: int) -> Dict[str, Any]:
    """Aggregate after adding one ``rating`` to ``count`` ratings averaging ``average``."""
    new_count = count + 1
    new_average = ((average * count) + rating) / new_count
    return {"average": round_rating(new_average), "count": new_count}


def validate_rating(rating: Any) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5")
    return rating


class ProductRepository:
    """CRUD, listing and rating operations over the products collection."""

    def __init__(
        self,
        collection: Collection,
        catalog: Optional[CatalogConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._collection = collection
        self._catalog = catalog or CatalogConfig()
        self._clock = clock

    def ensure_indexes(self) -> None:
        """Create the unique id, full-text and category indexes."""
        self._collection.create_index([("productId", ASCENDING)], unique=True, name="productId_unique")
        self._collection.create_index(
            [("name", TEXT), ("description", TEXT), ("tags", TEXT)],
            name="product_text",
        )
        self._collection.create_index(
            [("category", ASCENDING), ("createdAt", DESCENDING)],
            name="category_createdAt",
        )
        logger.debug("Product indexes ensured")

    # Reads

    def _find(self, query: ProductQuery) -> List[Dict[str, Any]]:
        if query.skip > MAX_SKIP:
            # No collection holds that many documents, and BSON cannot encode the offset.
            return []
        cursor = self._collection.find(query.mongo_filter(), query.projection())
        cursor = cursor.sort(query.mongo_sort()).skip(query.skip).limit(query.page_size)
        return list(cursor)

    @transient_retry
    def list_products(self, query: ProductQuery) -> Tuple[List[Dict[str, Any]], int]:
        """One page of matching products and the total match count."""
        items = self._find(query)
        total = self._collection.count_documents(query.mongo_filter())
        return items, total

    @transient_retry
    def find_products(self, query: ProductQuery) -> List[Dict[str, Any]]:
        """One page of matching products, without counting."""
        return self._find(query)

    def _resolve(self, product_id: str) -> Optional[Dict[str, Any]]:
        for ref in parse_product_ref(product_id):
            document = self._collection.find_one(ref.filter())
            if document is not None:
                return document
        return None

    @transient_retry
    def resolve(self, product_id: str) -> Optional[Dict[str, Any]]:
        """The product addressed by business id or internal id, if any."""
        return self._resolve(product_id)

    def get_product(self, product_id: str) -> Dict[str, Any]:
        """
        Raises:
            NotFoundError: If no product matches.
        """
        document = self.resolve(product_id)
        if document is None:
            raise NotFoundError("Product not found")
        return document

    # Writes

    @transient_retry
    def _latest_product_id(self) -> Optional[str]:
        document = self._collection.find_one(
            {"productId": {"$regex": product_id_pattern(self._catalog.id_prefix)}},
            projection={"productId": True},
            sort=[("createdAt", DESCENDING), ("_id", DESCENDING)],
        )
        return document["productId"] if document else None

    def _candidate_id(self, previous: Optional[str]) -> str:
        prefix = self._catalog.id_prefix
        candidate = next_product_id(self._latest_product_id(), prefix, self._catalog.id_base)
        if previous is not None:
            floor = parse_sequence(previous, prefix) + 1
            if parse_sequence(candidate, prefix) < floor:
                candidate = format_product_id(floor, prefix)
        return candidate

    def create(self, draft: ProductDraft) -> Dict[str, Any]:
        """
        Insert a new product with a freshly assigned productId.

        Args:
            draft: Validated client fields.

        Returns:
            The stored document, including ``_id``.

        Raises:
            ConflictError: If every attempted productId was already taken.
        """
        now = self._clock()
        document = draft.to_document(exclude_none=True)
        document["ratings"] = {"average": 0.0, "count": 0}
        document["createdAt"] = now
        document["updatedAt"] = now

        candidate = None
        for attempt in range(1, self._catalog.max_id_attempts + 1):
            candidate = self._candidate_id(candidate)
            record = dict(document, productId=candidate)
            try:
                result = self._collection.insert_one(record)
            except DuplicateKeyError:
                logger.warning(f"Product id {candidate} already taken (attempt {attempt})")
                continue
            record["_id"] = result.inserted_id
            logger.info(f"Created product {candidate}")
            return record

        raise ConflictError(
            f"Could not assign a unique product id after {self._catalog.max_id_attempts} attempts"
        )

    def _touched_at(self, current: Mapping[str, Any]) -> datetime:
        """New ``updatedAt`` for ``current``, always later than the stored one."""
        now = self._clock()
        previous = current.get("updatedAt")
        if isinstance(previous, datetime):
            now = max(as_utc(now), as_utc(previous) + timedelta(milliseconds=1))
        return now

    @transient_retry
    def _set_fields(self, object_id: ObjectId, changes: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        return self._collection.find_one_and_update(
            {"_id": object_id},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )

    def update(self, product_id: str, patch: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Merge ``patch`` into the product and advance ``updatedAt``.

        Immutable fields and ratings in ``patch`` are ignored.

        Raises:
            NotFoundError: If no product matches.
        """
        current = self.resolve(product_id)
        if current is None:
            raise NotFoundError("Product not found")

        changes = {k: v for k, v in patch.items() if k not in PROTECTED_FIELDS}
        changes["updatedAt"] = self._touched_at(current)

        updated = self._set_fields(current["_id"], changes)
        if updated is None:
            raise NotFoundError("Product not found")
        logger.info(f"Updated product {updated.get('productId')}: {sorted(changes)}")
        return updated

    @transient_retry
    def _exists(self, object_id: ObjectId) -> bool:
        return self._collection.find_one({"_id": object_id}, projection={"_id": True}) is not None

    def delete(self, product_id: str) -> bool:
        """Remove the product. Returns False if nothing matched."""
        current = self.resolve(product_id)
        if current is None:
            return False
        try:
            deleted = self._collection.delete_one({"_id": current["_id"]}).deleted_count == 1
        except AutoReconnect:
            # The reply was lost; a missing document means the delete went through.
            if self._exists(current["_id"]):
                raise
            deleted = True
        if deleted:
            logger.info(f"Deleted product {current.get('productId')}")
        return deleted

    def _rate_once(self, product_id: str, rating: int) -> Optional[Dict[str, Any]]:
        current = self.resolve(product_id)
        if current is None:
            raise NotFoundError("Product not found")

        ratings = current.get("ratings") or {}
        count = int(ratings.get("count", 0))
        average = float(ratings.get("average", 0))

        guard: Dict[str, Any] = {"_id": current["_id"]}
        guard["ratings.count"] = count if "count" in ratings else {"$exists": False}

        # Not retried: after a lost reply the guard would match the new count
        # and the rating would be counted twice.
        return self._collection.find_one_and_update(
            guard,
            {"$set": {"ratings": compute_rating(average, count, rating), "updatedAt": self._touched_at(current)}},
            return_document=ReturnDocument.AFTER,
        )

    def apply_rating(self, product_id: str, rating: Any) -> Dict[str, Any]:
        """
        Fold one rating into the product's running average.

        Args:
            product_id: Business id or internal id.
            rating: Integer from 1 to 5.

        Returns:
            The updated product.

        Raises:
            ValidationError: If ``rating`` is not an integer in [1, 5].
            NotFoundError: If no product matches.
            ConflictError: If concurrent ratings kept winning the race.
            AutoReconnect: If the connection dropped during the write. The
                rating may or may not have been recorded; it is never recorded twice.
        """
        rating = validate_rating(rating)

        for attempt in range(1, self._catalog.max_rating_attempts + 1):
            updated = self._rate_once(product_id, rating)
            if updated is not None:
                logger.info(
                    f"Rated product {updated.get('productId')} {rating}: "
                    f"average={updated['ratings']['average']} count={updated['ratings']['count']}"
                )
                return updated
            logger.warning(f"Concurrent rating on {product_id}, retrying (attempt {attempt})")

        raise ConflictError("Could not record rating due to concurrent updates")
