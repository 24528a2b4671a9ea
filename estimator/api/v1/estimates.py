"""Stored estimate endpoints."""

from typing import Annotated

from fastapi import APIRouter, Query
from pydantic import BaseModel

from estimator.api.deps import StoreDep
from estimator.models.estimate import UNIT_CHOICES, EstimateRecord

router = APIRouter()


class EstimateListResponse(BaseModel):
    """Response for listing stored estimates."""

    estimates: list[EstimateRecord]
    total: int


class UnitListResponse(BaseModel):
    """Units offered by the item unit picker."""

    units: list[str]


@router.get(
    "/estimates",
    response_model=EstimateListResponse,
    summary="List stored estimates",
)
async def list_estimates(
    store: StoreDep,
    customer_id: Annotated[str | None, Query()] = None,
) -> EstimateListResponse:
    """List saved estimates, newest first, optionally for one customer."""
    estimates = await store.list_estimates(customer_id=customer_id)
    return EstimateListResponse(estimates=estimates, total=len(estimates))


@router.get(
    "/units",
    response_model=UnitListResponse,
    summary="List unit choices",
)
async def list_units() -> UnitListResponse:
    """Units are stored as free text; these are the picker's suggestions."""
    return UnitListResponse(units=list(UNIT_CHOICES))
