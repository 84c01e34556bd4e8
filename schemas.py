"""
Request schemas for the product catalog

Products are stored in the "products" collection with camelCase field names.
Clients send the same camelCase names; snake_case attribute names are accepted too.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator, model_validator
from pydantic.alias_generators import to_camel

# Never client-writable; stripped from update bodies before validation.
IMMUTABLE_FIELDS = (
    "_id", "id", "productId", "product_id", "createdAt", "created_at", "updatedAt", "updated_at",
)


class CatalogModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        str_strip_whitespace=True,
    )

    def to_document(self, **kwargs) -> Dict[str, Any]:
        """Field values keyed by their stored (camelCase) names."""
        return self.model_dump(by_alias=True, **kwargs)


class Specification(CatalogModel):
    name: str = Field(..., min_length=1)
    value: str


def _unique(values: List[str]) -> List[str]:
    return list(dict.fromkeys(values))


class ProductDraft(CatalogModel):
    """Body of POST /products."""
    name: str = Field(..., min_length=1, description="Product name")
    description: str = Field(..., min_length=1, description="Product description")
    price: float = Field(..., ge=0, description="Price")
    discounted_price: Optional[float] = Field(None, ge=0, description="Discounted price")
    category: str = Field(..., min_length=1, description="Product category")
    subcategory: Optional[str] = None
    images: List[str] = Field(default_factory=list, description="Image URLs")
    main_image: str = Field(..., min_length=1, description="Main image URL")
    in_stock: bool = Field(True, description="Whether product is in stock")
    quantity: int = Field(0, ge=0)
    features: List[str] = Field(default_factory=list)
    specifications: List[Specification] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list, description="Search keywords")

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, v: List[str]) -> List[str]:
        return _unique(v)


class ProductPatch(CatalogModel):
    """Body of PUT /products/{productId}. Only supplied fields are applied."""
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    discounted_price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = Field(None, min_length=1)
    subcategory: Optional[str] = None
    images: Optional[List[str]] = None
    main_image: Optional[str] = Field(None, min_length=1)
    in_stock: Optional[bool] = None
    quantity: Optional[int] = Field(None, ge=0)
    features: Optional[List[str]] = None
    specifications: Optional[List[Specification]] = None
    tags: Optional[List[str]] = None

    @model_validator(mode="before")
    @classmethod
    def strip_immutable_fields(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = {k: v for k, v in data.items() if k not in IMMUTABLE_FIELDS}
        return data

    @field_validator(
        "name", "description", "price", "category", "images", "main_image",
        "in_stock", "quantity", "features", "specifications", "tags",
    )
    @classmethod
    def reject_null(cls, v: Any, info) -> Any:
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _unique(v) if v is not None else v

    def to_update(self) -> Dict[str, Any]:
        """$set document holding only the fields the client sent."""
        return self.to_document(exclude_unset=True)


class RatingRequest(CatalogModel):
    """Body of POST /products/{productId}/rate."""
    rating: StrictInt
    review: Optional[str] = None
