"""
Bid and supply endpoints.

Both sides expose the same routes, so they are registered by one function
per router:

    /api/bids, /api/supplies              place, get, cancel, status, reconcile
    /api/my/bids, /api/my/supplies        the caller's own orders
    /api/timeslots/{id}/bids|supplies     public order book of a timeslot
"""

from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, Query, status

import app.schemas.orders as schemas
from app.core.dependencies import (
    SessionContext,
    get_bid_service,
    get_current_session,
    get_optional_session,
    get_supply_service,
    require_operator,
)
from app.schemas.my_base_model import DataResponse, PageResponse
from app.services.orders import OrderService

bids_router = APIRouter()
supplies_router = APIRouter()
my_orders_router = APIRouter()
timeslot_orders_router = APIRouter()
group_tags: List[str] = ["Orders"]


def _register_order_routes(router: APIRouter, name: str, get_service: Callable[..., OrderService]) -> None:
    @router.post(
        "",
        tags=group_tags,
        response_model=DataResponse[schemas.Order],
        status_code=status.HTTP_201_CREATED,
        name=f"place_{name}",
    )
    def place_order(
        body: schemas.OrderCreateRequest,
        session: SessionContext = Depends(get_current_session),
        service: OrderService = Depends(get_service),
    ) -> DataResponse[schemas.Order]:
        """Place an order on an OPEN timeslot; it starts PENDING.

        - timeslotId: target timeslot
        - price: price per kWh (> 0)
        - quantity: kWh (> 0)
        """
        order = service.place_order(
            body.timeslot_id, body.price, body.quantity, session.wallet_address, session.user_id
        )
        return DataResponse[schemas.Order](data=schemas.Order.from_model(order))

    @router.get(
        "/{order_id}",
        tags=group_tags,
        response_model=DataResponse[schemas.Order],
        name=f"get_{name}",
    )
    def get_order(
        order_id: str,
        session: SessionContext = Depends(get_current_session),
        service: OrderService = Depends(get_service),
    ) -> DataResponse[schemas.Order]:
        order = service.get_order(order_id, session.user_id, session.is_operator)
        return DataResponse[schemas.Order](data=schemas.Order.from_model(order))

    @router.delete(
        "/{order_id}",
        tags=group_tags,
        response_model=DataResponse[schemas.Order],
        name=f"cancel_{name}",
    )
    def cancel_order(
        order_id: str,
        session: SessionContext = Depends(get_current_session),
        service: OrderService = Depends(get_service),
    ) -> DataResponse[schemas.Order]:
        """Cancel your own PENDING or CONFIRMED order while its timeslot is OPEN."""
        order = service.cancel_order(order_id, session.user_id, session.wallet_address)
        return DataResponse[schemas.Order](data=schemas.Order.from_model(order))

    @router.put(
        "/{order_id}/status",
        tags=group_tags,
        response_model=DataResponse[schemas.Order],
        name=f"update_{name}_status",
    )
    def update_order_status(
        order_id: str,
        body: schemas.OrderStatusUpdateRequest,
        _operator: SessionContext = Depends(require_operator),
        service: OrderService = Depends(get_service),
    ) -> DataResponse[schemas.Order]:
        """Record a status change observed on-chain (operators only).

        - status: target status
        - txSignature: optional transaction signature
        - escrowAccount: optional escrow account address
        """
        order = service.update_order_status(order_id, body.status, body.tx_signature, body.escrow_account)
        return DataResponse[schemas.Order](data=schemas.Order.from_model(order))

    @router.post(
        "/{order_id}/reconcile",
        tags=group_tags,
        response_model=DataResponse[schemas.Order],
        name=f"reconcile_{name}",
    )
    def reconcile_order(
        order_id: str,
        _operator: SessionContext = Depends(require_operator),
        service: OrderService = Depends(get_service),
    ) -> DataResponse[schemas.Order]:
        """Check the order's transaction on the ledger and confirm it if it landed."""
        order = service.reconcile_order(order_id)
        return DataResponse[schemas.Order](data=schemas.Order.from_model(order))


def _register_my_orders_route(name: str, get_service: Callable[..., OrderService]) -> None:
    @my_orders_router.get(
        f"/{name}",
        tags=group_tags,
        response_model=PageResponse[schemas.Order],
        name=f"my_{name}",
    )
    def get_my_orders(
        page: int = Query(default=1, description="Page number, starts at 1"),
        limit: int = Query(default=10, description="Page size, default: 10, max: 100"),
        sort_by: Optional[str] = Query(default=None, alias="sortBy", description="createdAt, updatedAt, price, quantity or status"),
        sort_order: Optional[str] = Query(default=None, alias="sortOrder", description="asc or desc, default: desc"),
        order_status: Optional[str] = Query(default=None, alias="status", description="Filter by status"),
        timeslot_id: Optional[str] = Query(default=None, alias="timeslotId", description="Filter by timeslot"),
        price_from: Optional[float] = Query(default=None, alias="priceFrom"),
        price_to: Optional[float] = Query(default=None, alias="priceTo"),
        session: SessionContext = Depends(get_current_session),
        service: OrderService = Depends(get_service),
    ) -> PageResponse[schemas.Order]:
        """
        Orders placed by the caller; other users' orders are never included.

        Query Parameters:
        - page, limit: pagination (limit is capped at 100)
        - sortBy / sortOrder: sort field and direction
        - status, timeslotId, priceFrom, priceTo: filters
        """
        result = service.get_user_orders(
            session.user_id,
            status=order_status,
            timeslot_id=timeslot_id,
            price_from=price_from,
            price_to=price_to,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        return PageResponse[schemas.Order].from_page(result, schemas.Order.from_model)


def _register_timeslot_order_routes(name: str, get_service: Callable[..., OrderService]) -> None:
    @timeslot_orders_router.get(
        f"/{{timeslot_id}}/{name}",
        tags=group_tags,
        response_model=PageResponse[schemas.Order],
        name=f"timeslot_{name}",
    )
    def get_timeslot_orders(
        timeslot_id: str,
        page: int = Query(default=1, description="Page number, starts at 1"),
        limit: int = Query(default=10, description="Page size, default: 10, max: 100"),
        sort_by: Optional[str] = Query(default=None, alias="sortBy"),
        sort_order: Optional[str] = Query(default=None, alias="sortOrder"),
        session: Optional[SessionContext] = Depends(get_optional_session),
        service: OrderService = Depends(get_service),
    ) -> PageResponse[schemas.Order]:
        """Order book of a timeslot: CONFIRMED and MATCHED orders (operators see every status)."""
        result = service.get_timeslot_orders(
            timeslot_id,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
            include_all=session is not None and session.is_operator,
        )
        return PageResponse[schemas.Order].from_page(result, schemas.Order.from_model)

    @timeslot_orders_router.get(
        f"/{{timeslot_id}}/{name}/stats",
        tags=group_tags,
        response_model=DataResponse[schemas.OrderStats],
        name=f"timeslot_{name}_stats",
    )
    def get_timeslot_order_stats(
        timeslot_id: str,
        service: OrderService = Depends(get_service),
    ) -> DataResponse[schemas.OrderStats]:
        stats = service.get_timeslot_statistics(timeslot_id)
        return DataResponse[schemas.OrderStats](data=schemas.OrderStats(**stats))


_register_order_routes(bids_router, "bid", get_bid_service)
_register_order_routes(supplies_router, "supply", get_supply_service)
_register_my_orders_route("bids", get_bid_service)
_register_my_orders_route("supplies", get_supply_service)
_register_timeslot_order_routes("bids", get_bid_service)
_register_timeslot_order_routes("supplies", get_supply_service)
