from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

import app.schemas.timeslot as schemas
from app.core.dependencies import SessionContext, get_timeslot_service, require_operator
from app.schemas.my_base_model import DataResponse, PageResponse
from app.services.timeslots import TimeslotService

router = APIRouter()
group_tags: List[str] = ["Timeslots"]


@router.post(
    "",
    tags=group_tags,
    response_model=DataResponse[schemas.Timeslot],
    status_code=status.HTTP_201_CREATED,
)
def create_timeslot(
    body: schemas.TimeslotCreateRequest,
    operator: SessionContext = Depends(require_operator),
    service: TimeslotService = Depends(get_timeslot_service),
) -> DataResponse[schemas.Timeslot]:
    """Open a new auction window (operators only)."""
    timeslot = service.create_timeslot(body.start_time, body.end_time, body.total_energy, operator.wallet_address)
    return DataResponse[schemas.Timeslot](data=schemas.Timeslot.from_model(timeslot))


@router.get(
    "",
    tags=group_tags,
    response_model=PageResponse[schemas.Timeslot],
)
def list_timeslots(
    timeslot_status: Optional[str] = Query(default=None, alias="status", description="OPEN, SEALED, SETTLED or CANCELLED"),
    start_time_from: Optional[datetime] = Query(default=None, alias="startTimeFrom"),
    start_time_to: Optional[datetime] = Query(default=None, alias="startTimeTo"),
    page: int = Query(default=1, description="Page number, starts at 1"),
    limit: int = Query(default=10, description="Page size, default: 10, max: 100"),
    sort_by: Optional[str] = Query(default=None, alias="sortBy", description="startTime, endTime, createdAt or totalEnergy"),
    sort_order: Optional[str] = Query(default=None, alias="sortOrder", description="asc or desc, default: desc"),
    service: TimeslotService = Depends(get_timeslot_service),
) -> PageResponse[schemas.Timeslot]:
    """
    List timeslots.

    Query Parameters:
    - status: filter by status
    - startTimeFrom / startTimeTo: start time range (UTC)
    - page, limit, sortBy, sortOrder: pagination (limit is capped at 100)
    """
    result = service.list_timeslots(
        status=timeslot_status,
        start_time_from=start_time_from,
        start_time_to=start_time_to,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return PageResponse[schemas.Timeslot].from_page(result, schemas.Timeslot.from_model)


@router.get("/active", tags=group_tags, response_model=DataResponse[List[schemas.Timeslot]])
def get_active_timeslots(
    service: TimeslotService = Depends(get_timeslot_service),
) -> DataResponse[List[schemas.Timeslot]]:
    """OPEN timeslots whose window contains the current time."""
    timeslots = service.get_active_timeslots()
    return DataResponse[List[schemas.Timeslot]](data=[schemas.Timeslot.from_model(t) for t in timeslots])


@router.get("/upcoming", tags=group_tags, response_model=DataResponse[List[schemas.Timeslot]])
def get_upcoming_timeslots(
    limit: int = Query(default=10, ge=1, le=100, description="Maximum number of timeslots, default: 10"),
    service: TimeslotService = Depends(get_timeslot_service),
) -> DataResponse[List[schemas.Timeslot]]:
    timeslots = service.get_upcoming_timeslots(limit)
    return DataResponse[List[schemas.Timeslot]](data=[schemas.Timeslot.from_model(t) for t in timeslots])


@router.post("/expire-stale", tags=group_tags, response_model=DataResponse[schemas.ExpiredOrders])
def expire_stale_orders(
    _operator: SessionContext = Depends(require_operator),
    service: TimeslotService = Depends(get_timeslot_service),
) -> DataResponse[schemas.ExpiredOrders]:
    """Expire PENDING orders on timeslots whose window has closed (operators only)."""
    expired = service.expire_stale_orders()
    return DataResponse[schemas.ExpiredOrders](
        data=schemas.ExpiredOrders(bids=expired["bid"], supplies=expired["supply"])
    )


@router.get("/{timeslot_id}", tags=group_tags, response_model=DataResponse[schemas.Timeslot])
def get_timeslot(
    timeslot_id: str,
    service: TimeslotService = Depends(get_timeslot_service),
) -> DataResponse[schemas.Timeslot]:
    timeslot = service.get_timeslot(timeslot_id)
    return DataResponse[schemas.Timeslot](data=schemas.Timeslot.from_model(timeslot))


@router.get("/{timeslot_id}/stats", tags=group_tags, response_model=DataResponse[schemas.TimeslotStats])
def get_timeslot_stats(
    timeslot_id: str,
    service: TimeslotService = Depends(get_timeslot_service),
) -> DataResponse[schemas.TimeslotStats]:
    stats = service.get_timeslot_stats(timeslot_id)
    stats["timeslot"] = schemas.Timeslot.from_model(stats["timeslot"])
    return DataResponse[schemas.TimeslotStats](data=schemas.TimeslotStats(**stats))


@router.put("/{timeslot_id}", tags=group_tags, response_model=DataResponse[schemas.Timeslot])
def update_timeslot(
    timeslot_id: str,
    body: schemas.TimeslotUpdateRequest,
    operator: SessionContext = Depends(require_operator),
    service: TimeslotService = Depends(get_timeslot_service),
) -> DataResponse[schemas.Timeslot]:
    """Change the energy total of an OPEN timeslot (operators only)."""
    timeslot = service.update_timeslot(timeslot_id, body.total_energy, operator.wallet_address)
    return DataResponse[schemas.Timeslot](data=schemas.Timeslot.from_model(timeslot))


@router.post("/{timeslot_id}/seal", tags=group_tags, response_model=DataResponse[schemas.Timeslot])
def seal_timeslot(
    timeslot_id: str,
    operator: SessionContext = Depends(require_operator),
    service: TimeslotService = Depends(get_timeslot_service),
) -> DataResponse[schemas.Timeslot]:
    timeslot = service.seal_timeslot(timeslot_id, operator.wallet_address)
    return DataResponse[schemas.Timeslot](data=schemas.Timeslot.from_model(timeslot))


@router.post("/{timeslot_id}/settle", tags=group_tags, response_model=DataResponse[schemas.Timeslot])
def settle_timeslot(
    timeslot_id: str,
    body: schemas.TimeslotSettleRequest,
    operator: SessionContext = Depends(require_operator),
    service: TimeslotService = Depends(get_timeslot_service),
) -> DataResponse[schemas.Timeslot]:
    """Record the clearing price of a SEALED timeslot; remaining PENDING orders expire."""
    timeslot = service.settle_timeslot(timeslot_id, body.clearing_price, operator.wallet_address)
    return DataResponse[schemas.Timeslot](data=schemas.Timeslot.from_model(timeslot))


@router.post("/{timeslot_id}/cancel", tags=group_tags, response_model=DataResponse[schemas.Timeslot])
def cancel_timeslot(
    timeslot_id: str,
    operator: SessionContext = Depends(require_operator),
    service: TimeslotService = Depends(get_timeslot_service),
) -> DataResponse[schemas.Timeslot]:
    """Cancel an OPEN or SEALED timeslot; its PENDING and CONFIRMED orders expire."""
    timeslot = service.cancel_timeslot(timeslot_id, operator.wallet_address)
    return DataResponse[schemas.Timeslot](data=schemas.Timeslot.from_model(timeslot))
