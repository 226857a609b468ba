"""
Order lifecycle for bids and supplies.

Both sides share one state machine:

    PENDING -> CONFIRMED -> MATCHED
    PENDING | CONFIRMED -> CANCELLED     (owner, while the timeslot is OPEN)
    PENDING | CONFIRMED -> EXPIRED       (operator / timeslot cascade)

CANCELLED, MATCHED and EXPIRED are terminal. Every status write is a
conditional update on the status the service observed, so an owner cancel
racing a ledger confirmation cannot both succeed.
"""

import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from app.core.errors import (
    AuthorizationError,
    BlockchainError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from app.core.logging_cfg import mask_wallet
from app.db.base import utc_now
from app.db.gateway import OrderFilters, Page, PageRequest, PersistenceGateway
from app.models.orders import (
    ORDER_TRANSITIONS,
    PUBLIC_ORDER_STATUSES,
    TERMINAL_ORDER_STATUSES,
    OrderKind,
    OrderMixin,
    OrderStatus,
)
from app.models.timeslot import TimeslotStatus
from app.services.blockchain import SolanaRpcClient

logger = logging.getLogger(__name__)

ORDER_SORT_FIELDS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "price": "price",
    "quantity": "quantity",
    "status": "status",
}

CONFIRMED_LEDGER_STATES = {"confirmed", "finalized"}


def parse_order_status(value: Any) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).upper())
    except ValueError:
        raise ValidationError(f"status must be one of {[s.value for s in OrderStatus]}")


def _positive(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number")
    if not math.isfinite(number) or number <= 0:
        raise ValidationError(f"{name} must be positive")
    return number


class OrderService:
    def __init__(
        self,
        gateway: PersistenceGateway,
        kind: OrderKind,
        ledger: Optional[SolanaRpcClient] = None,
        clock: Callable[[], datetime] = utc_now,
        check_balance: bool = False,
    ):
        self.gateway = gateway
        self.kind = kind
        self.ledger = ledger
        self.clock = clock
        self.check_balance = check_balance

    @property
    def label(self) -> str:
        return self.kind.value.capitalize()

    def place_order(
        self,
        timeslot_id: str,
        price: float,
        quantity: float,
        owner_wallet: str,
        owner_id: str,
    ) -> OrderMixin:
        price = _positive(price, "price")
        quantity = _positive(quantity, "quantity")

        timeslot = self.gateway.find_timeslot_by_id(timeslot_id)
        if timeslot is None:
            raise NotFoundError(f"Timeslot with ID {timeslot_id} not found")
        if timeslot.status != TimeslotStatus.OPEN.value:
            raise StateConflictError(f"Cannot place {self.kind.value} on timeslot with status: {timeslot.status}")
        if timeslot.end_time <= self.clock():
            raise StateConflictError(f"Cannot place {self.kind.value} on expired timeslot")

        if self.gateway.find_active_order(self.kind, owner_id, timeslot_id) is not None:
            raise StateConflictError(f"User already has an active {self.kind.value} for this timeslot")

        self._validate_wallet_balance(owner_wallet, price, quantity)

        order =self.gateway.create_order(self.kind, owner_id, timeslot_id, price, quantity)
        logger.info(
            "%s %s placed on timeslot %s by %s (price=%s, quantity=%s)",
            self.label, order.id, timeslot_id, mask_wallet(owner_wallet), price, quantity,
        )
        return order

    def get_order(self, order_id: str, requester_id: Optional[str] = None, is_operator: bool = False) -> OrderMixin:
        """Fetch one order; only its owner or an operator may see it."""
        order = self._find(order_id)
        if not is_operator and order.user_id != requester_id:
            raise AuthorizationError(f"Access denied: can only view your own {self.kind.value}s")
        return order

    def get_user_orders(
        self,
        user_id: str,
        status: Optional[str] = None,
        timeslot_id: Optional[str] = None,
        price_from: Optional[float] = None,
        price_to: Optional[float] = None,
        page: Optional[int] = 1,
        limit: Optional[int] = 10,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
    ) -> Page:
        if not user_id:
            raise AuthorizationError("Owner identity is required")
        filters = OrderFilters(
            user_id=user_id,
            timeslot_id=timeslot_id,
            statuses=[parse_order_status(status)] if status else None,
            price_from=price_from,
            price_to=price_to,
        )
        request = PageRequest.build(page, limit, sort_by, sort_order, ORDER_SORT_FIELDS)
        return self.gateway.find_orders(self.kind, filters, request)

    def get_timeslot_orders(
        self,
        timeslot_id: str,
        page: Optional[int] = 1,
        limit: Optional[int] = 10,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
        include_all: bool = False,
    ) -> Page:
        """Public view: confirmed and matched orders only, unless include_all (operators)."""
        self._require_timeslot(timeslot_id)
        filters = OrderFilters(
            timeslot_id=timeslot_id,
            statuses=None if include_all else PUBLIC_ORDER_STATUSES,
        )
        request = PageRequest.build(page, limit, sort_by, sort_order, ORDER_SORT_FIELDS)
        return self.gateway.find_orders(self.kind, filters, request)

    def cancel_order(self, order_id: str, caller_id: str, caller_wallet: str) -> OrderMixin:
        order = self._find(order_id)
        if order.user_id != caller_id:
            raise AuthorizationError(f"Access denied: can only cancel your own {self.kind.value}s")

        current = OrderStatus(order.status)
        if OrderStatus.CANCELLED not in ORDER_TRANSITIONS[current]:
            raise StateConflictError(f"Cannot cancel {self.kind.value} with status: {current.value}")
        if order.timeslot.status != TimeslotStatus.OPEN.value:
            raise StateConflictError(f"Cannot cancel {self.kind.value} after timeslot is {order.timeslot.status}")

        if not self.gateway.transition_order(self.kind, order_id, {current}, OrderStatus.CANCELLED):
            raise StateConflictError(f"{self.label} {order_id} changed state concurrently")

        logger.info("%s %s cancelled by %s", self.label, order_id, mask_wallet(caller_wallet))
        return self._find(order_id)

    def update_order_status(
        self,
        order_id: str,
        new_status: Any,
        tx_signature: Optional[str] = None,
        escrow_account: Optional[str] = None,
    ) -> OrderMixin:
        """
        Apply a status reported by the ledger observer or an operator.

        Re-stating the current non-terminal status is allowed so a
        transaction signature or escrow account can be recorded on its own.
        """
        target = parse_order_status(new_status)
        order = self._find(order_id)
        current = OrderStatus(order.status)

        if current in TERMINAL_ORDER_STATUSES:
            raise StateConflictError(f"{self.label} {order_id} is already {current.value}")
        if target is not current and target not in ORDER_TRANSITIONS[current]:
            raise StateConflictError(f"Cannot move {self.kind.value} from {current.value} to {target.value}")

        values: Dict[str, Any] = {}
        if tx_signature:
            values["tx_signature"] = tx_signature
        if escrow_account:
            values["escrow_account"] = escrow_account

        if not self.gateway.transition_order(self.kind, order_id, {current}, target, **values):
            raise StateConflictError(f"{self.label} {order_id} changed state concurrently")

        logger.info("%s %s status %s -> %s (tx=%s)", self.label, order_id, current.value, target.value, tx_signature)
        return self._find(order_id)

    def reconcile_order(self, order_id: str) -> OrderMixin:
        """Confirm a PENDING order once its transaction lands on the ledger."""
        if self.ledger is None:
            raise BlockchainError("Ledger client is not configured")
        order = self._find(order_id)
        if not order.tx_signature:
            raise ValidationError(f"{self.label} {order_id} has no transaction signature")
        if order.status != OrderStatus.PENDING.value:
            return order

        status = self.ledger.get_signature_status(order.tx_signature)
        if status is None:
            logger.debug("Transaction %s for %s %s not visible yet", order.tx_signature, self.kind.value, order_id)
            return order
        if status.get("err"):
            raise BlockchainError(f"Transaction {order.tx_signature} failed on-chain")
        if status.get("confirmation_status") in CONFIRMED_LEDGER_STATES:
            return self.update_order_status(order_id, OrderStatus.CONFIRMED)
        return order

    def get_timeslot_statistics(self, timeslot_id: str) -> Dict[str, Any]:
        self._require_timeslot(timeslot_id)
        stats = self.gateway.order_statistics(self.kind, timeslot_id, PUBLIC_ORDER_STATUSES)
        return {
            "total_orders": stats["count"],
            "total_quantity": stats["total_quantity"],
            "average_price": stats["average_price"],
            "highest_price": stats["highest_price"],
            "lowest_price": stats["lowest_price"],
        }

    def _validate_wallet_balance(self, owner_wallet: str, price: float, quantity: float) -> None:
        # bids lock price * quantity, supply offers lock their quantity
        if not self.check_balance or self.ledger is None:
            return
        required = price * quantity if self.kind == OrderKind.BID else quantity
        balance = self.ledger.get_balance(owner_wallet)
        logger.info(
            "Wallet balance check for %s: balance=%s required=%s",
            mask_wallet(owner_wallet), balance, required,
        )
        if balance < required:
            noun = "bid" if self.kind == OrderKind.BID else "supply offer"
            raise ValidationError(f"Insufficient wallet balance for {noun}")

    def _find(self, order_id: str) -> OrderMixin:
        order = self.gateway.find_order_by_id(self.kind, order_id)
        if order is None:
            raise NotFoundError(f"{self.label} with ID {order_id} not found")
        return order

    def _require_timeslot(self, timeslot_id: str) -> None:
        if self.gateway.find_timeslot_by_id(timeslot_id) is None:
            raise NotFoundError(f"Timeslot with ID {timeslot_id} not found")
