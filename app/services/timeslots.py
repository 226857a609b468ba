"""
Timeslot lifecycle (operator only).

    OPEN -> SEALED -> SETTLED
    OPEN | SEALED -> CANCELLED

Settling and cancelling also expire the orders the timeslot leaves behind,
in the same transaction as the timeslot update:
- settle expires orders still PENDING (never confirmed on-chain)
- cancel expires every PENDING and CONFIRMED order
"""

import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from app.core.errors import NotFoundError, StateConflictError, ValidationError
from app.core.logging_cfg import mask_wallet
from app.db.base import utc_now
from app.db.gateway import Page, PageRequest, PersistenceGateway, TimeslotFilters
from app.models.orders import OrderKind, OrderStatus
from app.models.timeslot import TIMESLOT_TRANSITIONS, Timeslot, TimeslotStatus

logger = logging.getLogger(__name__)

TIMESLOT_SORT_FIELDS = {
    "startTime": "start_time",
    "endTime": "end_time",
    "createdAt": "created_at",
    "totalEnergy": "total_energy",
}


def _positive(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number")
    if not math.isfinite(number) or number <= 0:
        raise ValidationError(f"{name} must be positive")
    return number


class TimeslotService:
    def __init__(self, gateway: PersistenceGateway, clock: Callable[[], datetime] = utc_now):
        self.gateway = gateway
        self.clock = clock

    def create_timeslot(
        self,
        start_time: datetime,
        end_time: datetime,
        total_energy: float,
        creator_wallet: str,
    ) -> Timeslot:
        if start_time >= end_time:
            raise ValidationError("Start time must be before end time")
        total_energy = _positive(total_energy, "totalEnergy")

        timeslot = self.gateway.create_timeslot(start_time, end_time, total_energy)
        logger.info("Timeslot %s created by %s", timeslot.id, mask_wallet(creator_wallet))
        return timeslot

    def get_timeslot(self, timeslot_id: str) -> Timeslot:
        timeslot = self.gateway.find_timeslot_by_id(timeslot_id)
        if timeslot is None:
            raise NotFoundError(f"Timeslot with ID {timeslot_id} not found")
        return timeslot

    def list_timeslots(
        self,
        status: Optional[str] = None,
        start_time_from: Optional[datetime] = None,
        start_time_to: Optional[datetime] = None,
        page: Optional[int] = 1,
        limit: Optional[int] = 10,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
    ) -> Page:
        filters = TimeslotFilters(
            status=_parse_status(status) if status else None,
            start_time_from=start_time_from,
            start_time_to=start_time_to,
        )
        request = PageRequest.build(
            page, limit, sort_by, sort_order, TIMESLOT_SORT_FIELDS, default_sort="startTime"
        )
        return self.gateway.find_timeslots(filters, request)

    def get_active_timeslots(self) -> List[Timeslot]:
        return self.gateway.find_active_timeslots(self.clock())

    def get_upcoming_timeslots(self, limit: int = 10) -> List[Timeslot]:
        return self.gateway.find_upcoming_timeslots(limit, self.clock())

    def update_timeslot(self, timeslot_id: str, total_energy: float, updater_wallet: str) -> Timeslot:
        total_energy = _positive(total_energy, "totalEnergy")
        self._transition(
            self.gateway,
            timeslot_id,
            {TimeslotStatus.OPEN},
            None,
            "update",
            total_energy=total_energy,
        )
        logger.info("Timeslot %s updated by %s", timeslot_id, mask_wallet(updater_wallet))
        return self.get_timeslot(timeslot_id)

    def seal_timeslot(self, timeslot_id: str, sealer_wallet: str) -> Timeslot:
        """Stop accepting new orders; existing orders are untouched."""
        self._transition(
            self.gateway, timeslot_id, _sources(TimeslotStatus.SEALED), TimeslotStatus.SEALED, "seal"
        )
        logger.info("Timeslot %s sealed by %s", timeslot_id, mask_wallet(sealer_wallet))
        return self.get_timeslot(timeslot_id)

    def settle_timeslot(self, timeslot_id: str, clearing_price: float, settler_wallet: str) -> Timeslot:
        """Fix the clearing price computed on-chain; terminal."""
        clearing_price = _positive(clearing_price, "clearingPrice")

        def settle(gateway: PersistenceGateway) -> Dict[str, int]:
            self._transition(
                gateway,
                timeslot_id,
                _sources(TimeslotStatus.SETTLED),
                TimeslotStatus.SETTLED,
                "settle",
                clearing_price=clearing_price,
            )
            return self._expire_orders(gateway, timeslot_id, {OrderStatus.PENDING})

        expired = self.gateway.transaction(settle)
        logger.info(
            "Timeslot %s settled at %s by %s, expired orders %s",
            timeslot_id, clearing_price, mask_wallet(settler_wallet), expired,
        )
        return self.get_timeslot(timeslot_id)

    def cancel_timeslot(self, timeslot_id: str, canceller_wallet: str) -> Timeslot:
        def cancel(gateway: PersistenceGateway) -> Dict[str, int]:
            self._transition(
                gateway,
                timeslot_id,
                _sources(TimeslotStatus.CANCELLED),
                TimeslotStatus.CANCELLED,
                "cancel",
            )
            return self._expire_orders(
                gateway, timeslot_id, {OrderStatus.PENDING, OrderStatus.CONFIRMED}
            )

        expired = self.gateway.transaction(cancel)
        logger.info(
            "Timeslot %s cancelled by %s, expired orders %s",
            timeslot_id, mask_wallet(canceller_wallet), expired,
        )
        return self.get_timeslot(timeslot_id)

    def expire_stale_orders(self) -> Dict[str, int]:
        """Expire PENDING orders whose timeslot window closed while OPEN or SEALED."""
        now = self.clock()

        def sweep(gateway: PersistenceGateway) -> Dict[str, int]:
            return {
                kind.value: gateway.expire_orders_for_elapsed_timeslots(kind, now)
                for kind in OrderKind
            }

        expired = self.gateway.transaction(sweep)
        logger.info("Expired stale orders: %s", expired)
        return expired

    def get_timeslot_stats(self, timeslot_id: str) -> Dict[str, Any]:
        timeslot = self.get_timeslot(timeslot_id)
        counted = [s for s in OrderStatus if s is not OrderStatus.CANCELLED]
        bids = self.gateway.order_statistics(OrderKind.BID, timeslot_id, counted)
        supplies = self.gateway.order_statistics(OrderKind.SUPPLY, timeslot_id, counted)
        return {
            "timeslot": timeslot,
            "total_bids": bids["count"],
            "total_supplies": supplies["count"],
            "total_demand": bids["total_quantity"],
            "total_supply": supplies["total_quantity"],
            "average_bid_price": bids["average_price"],
            "average_supply_price": supplies["average_price"],
        }

    @staticmethod
    def _transition(
        gateway: PersistenceGateway,
        timeslot_id: str,
        allowed_from: Iterable[TimeslotStatus],
        to_status: Optional[TimeslotStatus],
        action: str,
        **values: Any,
    ) -> None:
        allowed_from = set(allowed_from)
        timeslot = gateway.find_timeslot_by_id(timeslot_id)
        if timeslot is None:
            raise NotFoundError(f"Timeslot with ID {timeslot_id} not found")
        if TimeslotStatus(timeslot.status) not in allowed_from:
            raise StateConflictError(f"Cannot {action} timeslot with status: {timeslot.status}")
        if not gateway.transition_timeslot(timeslot_id, allowed_from, to_status, **values):
            raise StateConflictError(f"Timeslot {timeslot_id} changed state concurrently")

    @staticmethod
    def _expire_orders(
        gateway: PersistenceGateway,
        timeslot_id: str,
        statuses: Iterable[OrderStatus],
    ) -> Dict[str, int]:
        return {
            kind.value: gateway.expire_orders_for_timeslot(kind, timeslot_id, statuses)
            for kind in OrderKind
        }


def _parse_status(status: str) -> TimeslotStatus:
    try:
        return TimeslotStatus(status.upper())
    except ValueError:
        raise ValidationError(f"status must be one of {[s.value for s in TimeslotStatus]}")


def _sources(target: TimeslotStatus) -> set:
    return {status for status, targets in TIMESLOT_TRANSITIONS.items() if target in targets}
