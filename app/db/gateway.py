"""
Persistence gateway.

All durable reads and writes of the auth and auction tables go through
``PersistenceGateway``. Each public query is wrapped by ``with_retry`` so the
retry policy lives in exactly one place; ``transaction`` groups several
queries into one atomic unit.
"""

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Type, TypeVar

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import StoreTimeoutError, ValidationError
from app.db.base import utc_now
from app.db.retry import RetryPolicy, with_retry
from app.models.auth import AuthNonce
from app.models.orders import ACTIVE_ORDER_STATUSES, ORDER_MODELS, OrderKind, OrderMixin, OrderStatus
from app.models.timeslot import Timeslot, TimeslotStatus
from app.models.users import User

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_PAGE_LIMIT = 100
DEFAULT_PAGE_LIMIT = 10


@dataclass
class PageRequest:
    page: int = 1
    limit: int = DEFAULT_PAGE_LIMIT
    sort_by: str = "created_at"
    sort_order: str = "desc"

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @classmethod
    def build(
        cls,
        page: Optional[int],
        limit: Optional[int],
        sort_by: Optional[str],
        sort_order: Optional[str],
        sort_fields: Dict[str, str],
        default_sort: str = "createdAt",
    ) -> "PageRequest":
        """
        Normalise caller paging input.

        page is at least 1 and limit is capped at MAX_PAGE_LIMIT whatever the
        caller asked for; sort_by must be a key of ``sort_fields`` (API name
        -> column name).
        """
        page = max(1, int(page or 1))
        limit = max(1, min(MAX_PAGE_LIMIT, int(limit or DEFAULT_PAGE_LIMIT)))
        sort_key = sort_by or default_sort
        if sort_key not in sort_fields:
            raise ValidationError(
                f"sortBy must be one of {sorted(sort_fields)}"
            )
        order = (sort_order or "desc").lower()
        if order not in ("asc", "desc"):
            raise ValidationError("sortOrder must be 'asc' or 'desc'")
        return cls(page=page, limit=limit, sort_by=sort_fields[sort_key], sort_order=order)


@dataclass
class Page:
    items: List[Any]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass
class OrderFilters:
    user_id: Optional[str] = None
    timeslot_id: Optional[str] = None
    statuses: Optional[Iterable[OrderStatus]] = None
    price_from: Optional[float] = None
    price_to: Optional[float] = None


@dataclass
class TimeslotFilters:
    status: Optional[TimeslotStatus] = None
    start_time_from: Optional[datetime] = None
    start_time_to: Optional[datetime] = None


def _values(statuses: Iterable[Any]) -> List[str]:
    return [getattr(s, "value", s) for s in statuses]


class PersistenceGateway:
    def __init__(
        self,
        session: Session,
        retry_policy: Optional[RetryPolicy] = None,
        tx_timeout: float = settings.DB_TX_TIMEOUT_SECONDS,
    ):
        self.session = session
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.tx_timeout = tx_timeout
        self.in_transaction = False

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def transaction(self, fn: Callable[["PersistenceGateway"], T]) -> T:
        """
        Run ``fn(gateway)`` as one all-or-nothing unit.

        The unit is committed once at the end and rolled back on any error,
        including running past ``tx_timeout``. Transient failures retry the
        whole unit.
        """
        if self.in_transaction:
            return fn(self)

        def attempt() -> T:
            self.in_transaction = True
            started = time.monotonic()
            try:
                self._apply_statement_timeout()
                result = fn(self)
                elapsed = time.monotonic() - started
                if elapsed > self.tx_timeout:
                    logger.warning("Transaction %s took %.2fs, rolling back", attempt.__name__, elapsed)
                    raise StoreTimeoutError(
                        f"Transaction exceeded {self.tx_timeout:.0f}s execution limit"
                    )
                self.session.commit()
                return result
            except Exception:
                self.session.rollback()
                raise
            finally:
                self.in_transaction = False

        attempt.__name__ = getattr(fn, "__name__", "transaction")
        return self.retry_policy.call(attempt)

    def _apply_statement_timeout(self) -> None:
        bind = self.session.get_bind()
        if bind.dialect.name == "postgresql":
            timeout_ms = int(self.tx_timeout * 1000)
            self.session.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @with_retry
    def find_user_by_wallet(self, wallet_address: str) -> Optional[User]:
        return self.session.scalars(
            select(User).where(User.wallet_address == wallet_address)
        ).first()

    @with_retry
    def find_user_by_id(self, user_id: str) -> Optional[User]:
        return self.session.get(User, user_id)

    @with_retry
    def create_user(self, wallet_address: str, now: Optional[datetime] = None) -> User:
        user = User(wallet_address=wallet_address, last_login_at=now or utc_now())
        self.session.add(user)
        self.session.flush()
        return user

    @with_retry
    def update_user_last_login(self, user_id: str, now: Optional[datetime] = None) -> Optional[User]:
        user = self.session.get(User, user_id)
        if user is not None:
            user.last_login_at = now or utc_now()
            self.session.flush()
        return user

    # ------------------------------------------------------------------
    # Auth nonces
    # ------------------------------------------------------------------

    @with_retry
    def create_auth_nonce(self, wallet_address: str, nonce: str, expires_at: datetime) -> AuthNonce:
        record = AuthNonce(wallet_address=wallet_address, nonce=nonce, expires_at=expires_at)
        self.session.add(record)
        self.session.flush()
        return record

    @with_retry
    def find_valid_nonce(self, nonce: str, now: Optional[datetime] = None) -> Optional[AuthNonce]:
        now = now or utc_now()
        return self.session.scalars(
            select(AuthNonce).where(
                AuthNonce.nonce == nonce,
                AuthNonce.used_at.is_(None),
                AuthNonce.expires_at > now,
            )
        ).first()

    @with_retry
    def mark_nonce_used(self, nonce_id: str, now: Optional[datetime] = None) -> bool:
        """
        Consume a nonce with a single conditional UPDATE.

        Returns False when another request consumed it first or it expired
        in the meantime; at most one caller ever gets True.
        """
        now = now or utc_now()
        result = self.session.execute(
            update(AuthNonce)
            .where(
                AuthNonce.id == nonce_id,
                AuthNonce.used_at.is_(None),
                AuthNonce.expires_at > now,
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @with_retry
    def cleanup_expired_nonces(self, wallet_address: Optional[str] = None, now: Optional[datetime] = None) -> int:
        now = now or utc_now()
        stmt = delete(AuthNonce).where(AuthNonce.expires_at < now)
        if wallet_address:
            stmt = stmt.where(
                AuthNonce.wallet_address == wallet_address,
                AuthNonce.used_at.is_(None),
            )
        result = self.session.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount or 0

    # ------------------------------------------------------------------
    # Timeslots
    # ------------------------------------------------------------------

    @with_retry
    def create_timeslot(
        self,
        start_time: datetime,
        end_time: datetime,
        total_energy: float,
        status: TimeslotStatus = TimeslotStatus.OPEN,
    ) -> Timeslot:
        timeslot = Timeslot(
            start_time=start_time,
            end_time=end_time,
            total_energy=total_energy,
            status=status.value,
        )
        self.session.add(timeslot)
        self.session.flush()
        return timeslot

    @with_retry
    def find_timeslot_by_id(self, timeslot_id: str) -> Optional[Timeslot]:
        return self.session.get(Timeslot, timeslot_id, populate_existing=True)

    @with_retry
    def find_timeslots(self, filters: TimeslotFilters, page: PageRequest) -> Page:
        conditions = []
        if filters.status:
            conditions.append(Timeslot.status == filters.status.value)
        if filters.start_time_from:
            conditions.append(Timeslot.start_time >= filters.start_time_from)
        if filters.start_time_to:
            conditions.append(Timeslot.start_time <= filters.start_time_to)
        return self._paginate(Timeslot, conditions, page)

    @with_retry
    def find_active_timeslots(self, now: Optional[datetime] = None) -> List[Timeslot]:
        now = now or utc_now()
        return list(
            self.session.scalars(
                select(Timeslot)
                .where(
                    Timeslot.status == TimeslotStatus.OPEN.value,
                    Timeslot.start_time <= now,
                    Timeslot.end_time >= now,
                )
                .order_by(Timeslot.start_time.asc())
            )
        )

    @with_retry
    def find_upcoming_timeslots(self, limit: int = DEFAULT_PAGE_LIMIT, now: Optional[datetime] = None) -> List[Timeslot]:
        now = now or utc_now()
        return list(
            self.session.scalars(
                select(Timeslot)
                .where(Timeslot.start_time > now)
                .order_by(Timeslot.start_time.asc())
                .limit(min(limit, MAX_PAGE_LIMIT))
            )
        )

    @with_retry
    def transition_timeslot(
        self,
        timeslot_id: str,
        from_statuses: Iterable[TimeslotStatus],
        to_status: Optional[TimeslotStatus] = None,
        **values: Any,
    ) -> bool:
        """Conditional update: only applies while the row is in ``from_statuses``."""
        if to_status is not None:
            values["status"] = to_status.value
        values["updated_at"] = utc_now()
        result = self.session.execute(
            update(Timeslot)
            .where(Timeslot.id == timeslot_id, Timeslot.status.in_(_values(from_statuses)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Orders (bids and supplies)
    # ------------------------------------------------------------------

    @staticmethod
    def order_model(kind: OrderKind) -> Type[OrderMixin]:
        return ORDER_MODELS[kind]

    @with_retry
    def create_order(
        self,
        kind: OrderKind,
        user_id: str,
        timeslot_id: str,
        price: float,
        quantity: float,
    ) -> OrderMixin:
        model = self.order_model(kind)
        order = model(
            user_id=user_id,
            timeslot_id=timeslot_id,
            price=price,
            quantity=quantity,
            status=OrderStatus.PENDING.value,
        )
        self.session.add(order)
        self.session.flush()
        return order

    @with_retry
    def find_order_by_id(self, kind: OrderKind, order_id: str) -> Optional[OrderMixin]:
        return self.session.get(self.order_model(kind), order_id, populate_existing=True)

    @with_retry
    def find_active_order(self, kind: OrderKind, user_id: str, timeslot_id: str) -> Optional[OrderMixin]:
        model = self.order_model(kind)
        return self.session.scalars(
            select(model).where(
                model.user_id == user_id,
                model.timeslot_id == timeslot_id,
                model.status.in_(_values(ACTIVE_ORDER_STATUSES)),
            )
        ).first()

    @with_retry
    def find_orders(self, kind: OrderKind, filters: OrderFilters, page: PageRequest) -> Page:
        model = self.order_model(kind)
        conditions = []
        if filters.user_id is not None:
            conditions.append(model.user_id == filters.user_id)
        if filters.timeslot_id is not None:
            conditions.append(model.timeslot_id == filters.timeslot_id)
        if filters.statuses:
            conditions.append(model.status.in_(_values(filters.statuses)))
        if filters.price_from is not None:
            conditions.append(model.price >= filters.price_from)
        if filters.price_to is not None:
            conditions.append(model.price <= filters.price_to)
        return self._paginate(model, conditions, page)

    @with_retry
    def transition_order(
        self,
        kind: OrderKind,
        order_id: str,
        from_statuses: Iterable[OrderStatus],
        to_status: OrderStatus,
        **values: Any,
    ) -> bool:
        """Conditional status update; False if the row left ``from_statuses``."""
        model = self.order_model(kind)
        values["status"] = to_status.value
        values["updated_at"] = utc_now()
        result = self.session.execute(
            update(model)
            .where(model.id == order_id, model.status.in_(_values(from_statuses)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @with_retry
    def expire_orders_for_timeslot(
        self,
        kind: OrderKind,
        timeslot_id: str,
        from_statuses: Iterable[OrderStatus],
    ) -> int:
        model = self.order_model(kind)
        result = self.session.execute(
            update(model)
            .where(model.timeslot_id == timeslot_id, model.status.in_(_values(from_statuses)))
            .values(status=OrderStatus.EXPIRED.value, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    @with_retry
    def expire_orders_for_elapsed_timeslots(self, kind: OrderKind, now: Optional[datetime] = None) -> int:
        """Expire PENDING orders whose timeslot window closed without settlement."""
        now = now or utc_now()
        model = self.order_model(kind)
        elapsed = select(Timeslot.id).where(
            Timeslot.end_time <= now,
            Timeslot.status.in_([TimeslotStatus.OPEN.value, TimeslotStatus.SEALED.value]),
        )
        result = self.session.execute(
            update(model)
            .where(model.status == OrderStatus.PENDING.value, model.timeslot_id.in_(elapsed))
            .values(status=OrderStatus.EXPIRED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    @with_retry
    def order_statistics(
        self,
        kind: OrderKind,
        timeslot_id: str,
        statuses: Iterable[OrderStatus],
    ) -> Dict[str, float]:
        model = self.order_model(kind)
        row = self.session.execute(
            select(
                func.count(model.id),
                func.sum(model.quantity),
                func.avg(model.price),
                func.max(model.price),
                func.min(model.price),
            ).where(model.timeslot_id == timeslot_id, model.status.in_(_values(statuses)))
        ).one()
        count, total_quantity, avg_price, max_price, min_price = row
        return {
            "count": int(count or 0),
            "total_quantity": float(total_quantity or 0),
            "average_price": float(avg_price or 0),
            "highest_price": float(max_price or 0),
            "lowest_price": float(min_price or 0),
        }

    # ------------------------------------------------------------------

    def _paginate(self, model: Any, conditions: List[Any], page: PageRequest) -> Page:
        column = getattr(model, page.sort_by)
        ordering = column.asc() if page.sort_order == "asc" else column.desc()
        total = self.session.scalar(
            select(func.count()).select_from(model).where(*conditions)
        ) or 0
        items = list(
            self.session.scalars(
                select(model)
                .where(*conditions)
                .order_by(ordering, model.id.asc())
                .offset(page.offset)
                .limit(page.limit)
            ).unique()
        )
        return Page(items=items, total=int(total), page=page.page, limit=page.limit)
