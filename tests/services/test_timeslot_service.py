from datetime import timedelta

import pytest

from app.core.errors import NotFoundError, StateConflictError, ValidationError
from app.db.base import utc_now
from app.models.orders import OrderKind, OrderStatus
from app.models.timeslot import TimeslotStatus
from app.services.orders import OrderService
from app.services.timeslots import TimeslotService

OPERATOR = "OperatorWallet1111111111111111111111111111"


@pytest.fixture
def service(gateway) -> TimeslotService:
    return TimeslotService(gateway)


@pytest.fixture
def user(gateway, wallet):
    return gateway.create_user(wallet.address)


def order_status(gateway, kind, order_id):
    return gateway.find_order_by_id(kind, order_id).status


class TestCreateAndRead:
    def test_create_opens_timeslot(self, service):
        start = utc_now() + timedelta(hours=1)
        timeslot = service.create_timeslot(start, start + timedelta(hours=1), 500.0, OPERATOR)
        assert timeslot.status == TimeslotStatus.OPEN.value
        assert timeslot.total_energy == 500.0
        assert service.get_timeslot(timeslot.id).id == timeslot.id

    def test_start_must_precede_end(self, service):
        start = utc_now()
        with pytest.raises(ValidationError):
            service.create_timeslot(start, start, 100.0, OPERATOR)

    def test_energy_must_be_positive(self, service):
        start = utc_now()
        with pytest.raises(ValidationError):
            service.create_timeslot(start, start + timedelta(hours=1), 0, OPERATOR)

    def test_get_missing(self, service):
        with pytest.raises(NotFoundError):
            service.get_timeslot("missing")

    def test_list_sorted_by_start(self, service, make_timeslot):
        later = make_timeslot(start_offset_minutes=240)
        sooner = make_timeslot(start_offset_minutes=60)
        page = service.list_timeslots(sort_by="startTime", sort_order="asc")
        assert [t.id for t in page.items] == [sooner.id, later.id]

    def test_list_rejects_unknown_status(self, service):
        with pytest.raises(ValidationError):
            service.list_timeslots(status="RUNNING")

    def test_update_only_while_open(self, service, make_timeslot):
        timeslot = make_timeslot()
        assert service.update_timeslot(timeslot.id, 250.0, OPERATOR).total_energy == 250.0
        service.seal_timeslot(timeslot.id, OPERATOR)
        with pytest.raises(StateConflictError):
            service.update_timeslot(timeslot.id, 300.0, OPERATOR)


class TestLifecycle:
    def test_seal_then_settle(self, service, make_timeslot):
        timeslot = make_timeslot()
        assert service.seal_timeslot(timeslot.id, OPERATOR).status == TimeslotStatus.SEALED.value
        settled = service.settle_timeslot(timeslot.id, 42.5, OPERATOR)
        assert settled.status == TimeslotStatus.SETTLED.value
        assert settled.clearing_price == 42.5

    def test_settle_requires_sealed(self, service, make_timeslot):
        timeslot = make_timeslot()
        with pytest.raises(StateConflictError, match="OPEN"):
            service.settle_timeslot(timeslot.id, 10.0, OPERATOR)

    def test_settled_is_terminal(self, service, make_timeslot):
        timeslot = make_timeslot()
        service.seal_timeslot(timeslot.id, OPERATOR)
        service.settle_timeslot(timeslot.id, 10.0, OPERATOR)
        with pytest.raises(StateConflictError):
            service.cancel_timeslot(timeslot.id, OPERATOR)
        with pytest.raises(StateConflictError):
            service.seal_timeslot(timeslot.id, OPERATOR)

    def test_missing_timeslot(self, service):
        with pytest.raises(NotFoundError):
            service.seal_timeslot("missing", OPERATOR)


class TestOrderCascade:
    def test_cancel_expires_pending_and_confirmed_orders(self, service, gateway, make_timeslot, user):
        timeslot = make_timeslot()
        bids = OrderService(gateway, OrderKind.BID)
        supplies = OrderService(gateway, OrderKind.SUPPLY)
        bid = bids.place_order(timeslot.id, 10.0, 1.0, user.wallet_address, user.id)
        supply = supplies.place_order(timeslot.id, 8.0, 1.0, user.wallet_address, user.id)
        supplies.update_order_status(supply.id, "CONFIRMED")

        service.cancel_timeslot(timeslot.id, OPERATOR)

        assert order_status(gateway, OrderKind.BID, bid.id) == OrderStatus.EXPIRED.value
        assert order_status(gateway, OrderKind.SUPPLY, supply.id) == OrderStatus.EXPIRED.value

    def test_settle_expires_only_pending_orders(self, service, gateway, make_timeslot, user, other_wallet):
        timeslot = make_timeslot()
        other = gateway.create_user(other_wallet.address)
        bids = OrderService(gateway, OrderKind.BID)
        pending = bids.place_order(timeslot.id, 10.0, 1.0, user.wallet_address, user.id)
        confirmed = bids.place_order(timeslot.id, 12.0, 1.0, other.wallet_address, other.id)
        bids.update_order_status(confirmed.id, "CONFIRMED")

        service.seal_timeslot(timeslot.id, OPERATOR)
        service.settle_timeslot(timeslot.id, 11.0, OPERATOR)

        assert order_status(gateway, OrderKind.BID, pending.id) == OrderStatus.EXPIRED.value
        assert order_status(gateway, OrderKind.BID, confirmed.id) == OrderStatus.CONFIRMED.value

    def test_failed_cascade_leaves_timeslot_untouched(self, service, gateway, make_timeslot, monkeypatch):
        timeslot = make_timeslot()

        def broken_expire(*args, **kwargs):
            raise RuntimeError("write failed")

        monkeypatch.setattr(gateway, "expire_orders_for_timeslot", broken_expire)
        with pytest.raises(RuntimeError):
            service.cancel_timeslot(timeslot.id, OPERATOR)
        assert service.get_timeslot(timeslot.id).status == TimeslotStatus.OPEN.value

    def test_expire_stale_orders(self, service, gateway, make_timeslot, user):
        elapsed = make_timeslot(start_offset_minutes=-180, duration_minutes=60)
        gateway.create_order(OrderKind.BID, user.id, elapsed.id, 1.0, 1.0)
        gateway.create_order(OrderKind.SUPPLY, user.id, elapsed.id, 1.0, 1.0)
        running = make_timeslot()
        live = gateway.create_order(OrderKind.BID, user.id, running.id, 1.0, 1.0)

        assert service.expire_stale_orders() == {"bid": 1, "supply": 1}
        assert order_status(gateway, OrderKind.BID, live.id) == OrderStatus.PENDING.value


class TestStats:
    def test_counts_everything_but_cancelled(self, service, gateway, make_timeslot, user, other_wallet):
        timeslot = make_timeslot()
        other = gateway.create_user(other_wallet.address)
        bids = OrderService(gateway, OrderKind.BID)
        supplies = OrderService(gateway, OrderKind.SUPPLY)
        bids.place_order(timeslot.id, 10.0, 3.0, user.wallet_address, user.id)
        cancelled = bids.place_order(timeslot.id, 50.0, 7.0, other.wallet_address, other.id)
        bids.cancel_order(cancelled.id, other.id, other.wallet_address)
        supplies.place_order(timeslot.id, 6.0, 9.0, other.wallet_address, other.id)

        stats = service.get_timeslot_stats(timeslot.id)
        assert stats["timeslot"].id == timeslot.id
        assert stats["total_bids"] == 1
        assert stats["total_supplies"] == 1
        assert stats["total_demand"] == 3.0
        assert stats["total_supply"] == 9.0
        assert stats["average_bid_price"] == 10.0
        assert stats["average_supply_price"] == 6.0
