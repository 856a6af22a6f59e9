"""
Catalog listing endpoints backing the admin filter dropdowns.
"""
from fastapi import APIRouter, Depends, HTTPException
from typing import Dict, List
import logging

from routers.uploads import get_catalog_queries
from schemas import GarmentFilterRow, Option
from services.catalog_queries import CatalogQueries
from services.errors import StoreError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin")

OptionListing = Dict[str, List[Option]]


async def _listing(label: str, fetch):
    try:
        return await fetch()
    except StoreError as e:
        logger.error(f"Error retrieving {label}: {e}")
        raise HTTPException(status_code=500, detail=f"Error retrieving {label}")


@router.get("/brands", response_model=OptionListing)
async def get_brands(queries: CatalogQueries = Depends(get_catalog_queries)):
    return {"brands": await _listing("brands", queries.brands)}


@router.get("/garment-types", response_model=OptionListing)
async def get_garment_types(queries: CatalogQueries = Depends(get_catalog_queries)):
    return {"garmentTypes": await _listing("garment types", queries.garment_types)}


@router.get("/retailers", response_model=OptionListing)
async def get_retailers(queries: CatalogQueries = Depends(get_catalog_queries)):
    return {"retailers": await _listing("retailers", queries.retailers)}


@router.get("/occasions", response_model=OptionListing)
async def get_occasions(queries: CatalogQueries = Depends(get_catalog_queries)):
    return {"occasions": await _listing("occasions", queries.occasions)}


@router.get("/item-codes", response_model=OptionListing)
async def get_item_codes(queries: CatalogQueries = Depends(get_catalog_queries)):
    return {"itemCodes": await _listing("item codes", queries.item_codes)}


@router.get("/garments", response_model=Dict[str, List[GarmentFilterRow]])
async def get_garments(queries: CatalogQueries = Depends(get_catalog_queries)):
    garments = await _listing("garments", queries.garments)
    logger.info(f"Retrieved {len(garments)} garment records for filtering")
    return {"garments": garments}
