"""
Property listing API routes.

Read-only endpoints over the cached feed snapshot. When no data can be
loaded the responses carry a fallback placeholder flagged with is_fallback.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from propfeed.api.deps import get_lookup
from propfeed.core.errors import PropertyNotFoundError
from propfeed.core.models import (
    Image,
    OperationKind,
    Property,
    PropertyFilters,
    PropertyPage,
    PropertyStatus,
)
from propfeed.services.property_lookup import PropertyLookupService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/properties", tags=["Properties"])


class PropertyImagesResponse(BaseModel):
    property_id: str
    images: List[Image]
    total: int


def get_filters(
    property_type: Optional[str] = Query(None, description="Canonical type: homes, premises, offices, garages, storageRooms"),
    operation: Optional[OperationKind] = Query(None, description="sale or rent"),
    min_price: Optional[int] = Query(None, ge=0),
    max_price: Optional[int] = Query(None, ge=0),
    city: Optional[str] = Query(None, description="Case-insensitive substring of the city"),
    status: Optional[PropertyStatus] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
) -> PropertyFilters:
    return PropertyFilters(
        property_type=property_type,
        operation=operation,
        min_price=min_price,
        max_price=max_price,
        city=city,
        status=status,
        page=page,
        page_size=page_size,
    )


@router.get("", response_model=PropertyPage)
async def list_properties(
    filters: PropertyFilters = Depends(get_filters),
    lookup: PropertyLookupService = Depends(get_lookup),
):
    """
    List properties from the current feed snapshot.

    Supports filtering by type, operation, price range, city and status,
    with pagination (page_size up to 200).
    """
    return await lookup.list_properties(filters)


@router.get("/{property_id}", response_model=Property)
async def get_property(
    property_id: str,
    lookup: PropertyLookupService = Depends(get_lookup),
):
    """Get one property by identifier."""
    try:
        return await lookup.get_property(property_id)
    except PropertyNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.get("/{property_id}/images", response_model=PropertyImagesResponse)
async def get_property_images(
    property_id: str,
    lookup: PropertyLookupService = Depends(get_lookup),
):
    """
    Get the images of one property.

    Served from the partner API when configured, otherwise from the feed.
    An unavailable source yields an empty list.
    """
    images = await lookup.get_property_images(property_id)
    return PropertyImagesResponse(property_id=property_id, images=images, total=len(images))
