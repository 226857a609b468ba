from datetime import timedelta

import pytest

from app.core.errors import ValidationError
from app.db.base import utc_now
from app.db.gateway import MAX_PAGE_LIMIT, OrderFilters, PageRequest, TimeslotFilters
from app.models.orders import OrderKind, OrderStatus
from app.models.timeslot import TimeslotStatus

SORT_FIELDS = {"createdAt": "created_at", "price": "price"}


class TestPageRequest:
    def test_limit_is_capped(self):
        request = PageRequest.build(1, 1000, None, None, SORT_FIELDS)
        assert request.limit == MAX_PAGE_LIMIT

    def test_page_floor_and_defaults(self):
        request = PageRequest.build(0, None, None, None, SORT_FIELDS)
        assert request.page == 1
        assert request.limit == 10
        assert request.sort_by == "created_at"
        assert request.sort_order == "desc"
        assert request.offset == 0

    def test_unknown_sort_field_is_rejected(self):
        with pytest.raises(ValidationError):
            PageRequest.build(1, 10, "user_id; DROP TABLE bids", None, SORT_FIELDS)

    def test_unknown_sort_order_is_rejected(self):
        with pytest.raises(ValidationError):
            PageRequest.build(1, 10, "price", "sideways", SORT_FIELDS)


class TestNonces:
    def test_mark_used_succeeds_once(self, gateway, wallet):
        now = utc_now()
        record = gateway.create_auth_nonce(wallet.address, "a" * 64, now + timedelta(minutes=5))

        assert gateway.mark_nonce_used(record.id, now) is True
        assert gateway.mark_nonce_used(record.id, now) is False
        assert gateway.find_valid_nonce("a" * 64, now) is None

    def test_expired_nonce_cannot_be_used(self, gateway, wallet):
        now = utc_now()
        record = gateway.create_auth_nonce(wallet.address, "b" * 64, now - timedelta(seconds=1))

        assert gateway.find_valid_nonce("b" * 64, now) is None
        assert gateway.mark_nonce_used(record.id, now) is False

    def test_cleanup_only_touches_expired_unused_nonces_of_wallet(self, gateway, wallet, other_wallet):
        now = utc_now()
        gateway.create_auth_nonce(wallet.address, "1" * 64, now - timedelta(minutes=1))
        used = gateway.create_auth_nonce(wallet.address, "2" * 64, now - timedelta(minutes=1))
        gateway.mark_nonce_used(used.id, now - timedelta(minutes=2))
        gateway.create_auth_nonce(wallet.address, "3" * 64, now + timedelta(minutes=5))
        gateway.create_auth_nonce(other_wallet.address, "4" * 64, now - timedelta(minutes=1))

        assert gateway.cleanup_expired_nonces(wallet.address, now) == 1
        assert gateway.find_valid_nonce("3" * 64, now) is not None
        # global sweep removes every expired row
        assert gateway.cleanup_expired_nonces(now=now) == 2


class TestTimeslotQueries:
    def test_transition_is_conditional(self, gateway, make_timeslot):
        timeslot = make_timeslot()

        assert gateway.transition_timeslot(timeslot.id, {TimeslotStatus.OPEN}, TimeslotStatus.SEALED)
        assert not gateway.transition_timeslot(timeslot.id, {TimeslotStatus.OPEN}, TimeslotStatus.CANCELLED)
        assert gateway.find_timeslot_by_id(timeslot.id).status == TimeslotStatus.SEALED.value

    def test_active_and_upcoming(self, gateway, make_timeslot):
        running = make_timeslot(start_offset_minutes=-10)
        future = make_timeslot(start_offset_minutes=120)
        past = make_timeslot(start_offset_minutes=-300)

        active_ids = [t.id for t in gateway.find_active_timeslots(utc_now())]
        upcoming_ids = [t.id for t in gateway.find_upcoming_timeslots(10, utc_now())]
        assert active_ids == [running.id]
        assert upcoming_ids == [future.id]
        assert past.id not in active_ids + upcoming_ids

    def test_filtered_listing(self, gateway, make_timeslot):
        first = make_timeslot(start_offset_minutes=60)
        make_timeslot(start_offset_minutes=180)
        gateway.transition_timeslot(first.id, {TimeslotStatus.OPEN}, TimeslotStatus.SEALED)

        page = gateway.find_timeslots(
            TimeslotFilters(status=TimeslotStatus.SEALED),
            PageRequest(page=1, limit=10, sort_by="start_time", sort_order="asc"),
        )
        assert page.total == 1
        assert page.items[0].id == first.id


class TestOrderQueries:
    @pytest.fixture
    def user(self, gateway, wallet):
        return gateway.create_user(wallet.address)

    def test_pagination_counts(self, gateway, make_timeslot, user):
        timeslot = make_timeslot()
        for price in (1.0, 2.0, 3.0):
            gateway.create_order(OrderKind.BID, user.id, timeslot.id, price, 10.0)

        page = gateway.find_orders(
            OrderKind.BID,
            OrderFilters(user_id=user.id),
            PageRequest(page=2, limit=2, sort_by="price", sort_order="asc"),
        )
        assert page.total == 3
        assert page.total_pages == 2
        assert [o.price for o in page.items] == [3.0]

    def test_bids_and_supplies_are_separate(self, gateway, make_timeslot, user):
        timeslot = make_timeslot()
        bid = gateway.create_order(OrderKind.BID, user.id, timeslot.id, 1.0, 1.0)

        assert gateway.find_order_by_id(OrderKind.SUPPLY, bid.id) is None
        assert gateway.find_active_order(OrderKind.SUPPLY, user.id, timeslot.id) is None
        assert gateway.find_active_order(OrderKind.BID, user.id, timeslot.id).id == bid.id

    def test_transition_only_from_expected_status(self, gateway, make_timeslot, user):
        timeslot = make_timeslot()
        bid = gateway.create_order(OrderKind.BID, user.id, timeslot.id, 1.0, 1.0)

        assert gateway.transition_order(OrderKind.BID, bid.id, {OrderStatus.PENDING}, OrderStatus.CONFIRMED, tx_signature="sig")
        assert not gateway.transition_order(OrderKind.BID, bid.id, {OrderStatus.PENDING}, OrderStatus.CANCELLED)
        stored = gateway.find_order_by_id(OrderKind.BID, bid.id)
        assert stored.status == OrderStatus.CONFIRMED.value
        assert stored.tx_signature == "sig"

    def test_expire_for_elapsed_timeslots(self, gateway, make_timeslot, user):
        elapsed = make_timeslot(start_offset_minutes=-120, duration_minutes=60)
        running = make_timeslot()
        stale = gateway.create_order(OrderKind.SUPPLY, user.id, elapsed.id, 1.0, 1.0)
        live = gateway.create_order(OrderKind.SUPPLY, user.id, running.id, 1.0, 1.0)

        assert gateway.expire_orders_for_elapsed_timeslots(OrderKind.SUPPLY, utc_now()) == 1
        assert gateway.find_order_by_id(OrderKind.SUPPLY, stale.id).status == OrderStatus.EXPIRED.value
        assert gateway.find_order_by_id(OrderKind.SUPPLY, live.id).status == OrderStatus.PENDING.value

    def test_statistics(self, gateway, make_timeslot, user):
        timeslot = make_timeslot()
        for price, quantity in ((10.0, 5.0), (20.0, 15.0)):
            order = gateway.create_order(OrderKind.BID, user.id, timeslot.id, price, quantity)
            gateway.transition_order(OrderKind.BID, order.id, {OrderStatus.PENDING}, OrderStatus.CONFIRMED)
        gateway.create_order(OrderKind.BID, user.id, timeslot.id, 99.0, 1.0)

        stats = gateway.order_statistics(OrderKind.BID, timeslot.id, {OrderStatus.CONFIRMED})
        assert stats == {
            "count": 2,
            "total_quantity": 20.0,
            "average_price": 15.0,
            "highest_price": 20.0,
            "lowest_price": 10.0,
        }
