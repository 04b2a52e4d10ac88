"""
Canonical data model for normalized listings.

Every feed shape is mapped onto these models by the feed parser; nothing
downstream of the parser sees raw feed structures.
"""
import math
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class OperationKind(str, Enum):
    """Commercial operation a listing is offered under."""
    SALE = "sale"
    RENT = "rent"


class PropertyStatus(str, Enum):
    """Publication status of a listing."""
    ACTIVE = "active"
    INACTIVE = "inactive"


class Operation(BaseModel):
    kind: OperationKind = OperationKind.SALE
    price: int = Field(default=0, ge=0)
    currency: str = "EUR"


class Coordinates(BaseModel):
    latitude: float
    longitude: float


class Address(BaseModel):
    street: str = ""
    city: str
    province: str
    postal_code: str = ""
    coordinates: Optional[Coordinates] = None


class Features(BaseModel):
    rooms: int = Field(default=0, ge=0)
    bathrooms: int = Field(default=0, ge=0)
    area_constructed: int = Field(default=0, ge=0, description="Constructed area in m2")
    usable_area: Optional[int] = Field(default=None, ge=0)
    floor: Optional[str] = None


class Description(BaseModel):
    language: Optional[str] = None
    text: str


class Image(BaseModel):
    url: str
    position: int = Field(default=0, ge=0)
    tag: Optional[str] = None
    width: Optional[int] = Field(default=None, ge=0)
    height: Optional[int] = Field(default=None, ge=0)
    size_bytes: Optional[int] = Field(default=None, ge=0)


class Property(BaseModel):
    """
    One normalized listing.

    Price and areas are non-negative by construction. Empty description and
    image lists mean the feed had none, not that something failed.
    """
    id: str = Field(..., min_length=1)
    reference: Optional[str] = None
    title: str = ""
    property_type: str = "homes"
    operation: Operation = Field(default_factory=Operation)
    address: Address
    features: Features = Field(default_factory=Features)
    descriptions: List[Description] = Field(default_factory=list)
    images: List[Image] = Field(default_factory=list)
    amenities: List[str] = Field(default_factory=list)
    energy_rating: Optional[str] = None
    construction_year: Optional[int] = None
    status: PropertyStatus = PropertyStatus.ACTIVE
    published_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None

    # Placeholder records served when every upstream source failed
    is_fallback: bool = False


class PropertyCollection(BaseModel):
    """
    A complete snapshot of one feed file.

    Stored in the cache as a single value so readers never see a partially
    replaced collection.
    """
    properties: List[Property] = Field(default_factory=list)
    feed_name: Optional[str] = None
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = "feed"
    is_fallback: bool = False

    @property
    def total(self) -> int:
        return len(self.properties)

    def find(self, property_id: str) -> Optional[Property]:
        for prop in self.properties:
            if prop.id == property_id:
                return prop
        return None


class PropertyFilters(BaseModel):
    """Read-path filters and pagination."""
    property_type: Optional[str] = None
    operation: Optional[OperationKind] = None
    min_price: Optional[int] = Field(default=None, ge=0)
    max_price: Optional[int] = Field(default=None, ge=0)
    city: Optional[str] = None
    status: Optional[PropertyStatus] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=50, ge=1, le=200)

    def matches(self, prop: Property) -> bool:
        if self.property_type and prop.property_type != self.property_type:
            return False
        if self.operation and prop.operation.kind != self.operation:
            return False
        if self.min_price is not None and prop.operation.price < self.min_price:
            return False
        if self.max_price is not None and prop.operation.price > self.max_price:
            return False
        if self.city and self.city.lower() not in prop.address.city.lower():
            return False
        if self.status and prop.status != self.status:
            return False
        return True


class PropertyPage(BaseModel):
    properties: List[Property]
    total: int
    total_pages: int
    page: int
    page_size: int
    last_updated: datetime
    source: str
    is_fallback: bool = False

    @classmethod
    def from_collection(cls, collection: PropertyCollection, filters: PropertyFilters) -> "PropertyPage":
        """Apply filters and pagination to a snapshot."""
        matched = [prop for prop in collection.properties if filters.matches(prop)]
        start = (filters.page - 1) * filters.page_size
        return cls(
            properties=matched[start:start + filters.page_size],
            total=len(matched),
            total_pages=max(1, math.ceil(len(matched) / filters.page_size)),
            page=filters.page,
            page_size=filters.page_size,
            last_updated=collection.fetched_at,
            source=collection.source,
            is_fallback=collection.is_fallback,
        )
