import time
from unittest.mock import Mock

import pytest
from sqlalchemy import exc as sa_exc
from sqlalchemy import select

from app.core.errors import StoreTimeoutError
from app.db.gateway import PersistenceGateway
from app.db.retry import RetryPolicy, is_transient_error
from app.models.users import User


class FakeDriverError(Exception):
    def __init__(self, message: str, pgcode: str | None = None):
        super().__init__(message)
        self.pgcode = pgcode


def transient_error() -> sa_exc.OperationalError:
    return sa_exc.OperationalError("SELECT 1", {}, FakeDriverError("server closed the connection unexpectedly"))


def constraint_error() -> sa_exc.IntegrityError:
    return sa_exc.IntegrityError("INSERT", {}, FakeDriverError("UNIQUE constraint failed", pgcode="23505"))


class TestTransientClassification:
    def test_connection_errors_are_transient(self):
        assert is_transient_error(transient_error())
        assert is_transient_error(sa_exc.DisconnectionError("gone"))
        assert is_transient_error(sa_exc.TimeoutError("pool exhausted"))

    @pytest.mark.parametrize("sqlstate", ["40001", "40P01", "08006", "53300", "57P01"])
    def test_transient_sqlstates(self, sqlstate):
        error = sa_exc.DBAPIError("UPDATE", {}, FakeDriverError("boom", pgcode=sqlstate))
        assert is_transient_error(error)

    def test_logical_errors_are_not_transient(self):
        assert not is_transient_error(constraint_error())
        assert not is_transient_error(ValueError("nope"))
        assert not is_transient_error(StoreTimeoutError())


class TestRetryPolicy:
    def test_backoff_doubles_and_caps(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0)
        assert [policy.delay_for(n) for n in range(1, 5)] == [1.0, 2.0, 4.0, 5.0]

    def test_recovers_after_transient_failures(self):
        sleeps = []
        policy = RetryPolicy(max_attempts=3, sleep=sleeps.append)
        operation = Mock(side_effect=[transient_error(), transient_error(), "ok"])
        operation.__name__ = "operation"

        assert policy.call(operation) == "ok"
        assert operation.call_count == 3
        assert sleeps == [1.0, 2.0]

    def test_exhaustion_reraises_last_error_unchanged(self):
        errors = [transient_error(), transient_error(), transient_error()]
        policy = RetryPolicy(max_attempts=3, sleep=lambda s: None)
        operation = Mock(side_effect=errors)
        operation.__name__ = "operation"

        with pytest.raises(sa_exc.OperationalError) as exc_info:
            policy.call(operation)
        assert exc_info.value is errors[-1]
        assert operation.call_count == 3

    def test_non_transient_error_fails_immediately(self):
        error = constraint_error()
        sleeps = []
        policy = RetryPolicy(max_attempts=3, sleep=sleeps.append)
        operation = Mock(side_effect=error)
        operation.__name__ = "operation"

        with pytest.raises(sa_exc.IntegrityError) as exc_info:
            policy.call(operation)
        assert exc_info.value is error
        assert operation.call_count == 1
        assert sleeps == []


class TestGatewayRetry:
    def test_gateway_query_rolls_back_between_attempts(self, no_sleep_policy):
        session = Mock()
        user = Mock(spec=User)
        result = Mock()
        result.first.return_value = user
        session.scalars.side_effect = [transient_error(), result]
        gateway = PersistenceGateway(session, retry_policy=no_sleep_policy)

        assert gateway.find_user_by_wallet("wallet") is user
        assert session.scalars.call_count == 2
        assert session.rollback.call_count == 1
        assert session.commit.call_count == 1

    def test_transaction_is_all_or_nothing(self, gateway, db_session, wallet):
        def unit(gw: PersistenceGateway):
            gw.create_user(wallet.address)
            raise ValueError("abort")

        with pytest.raises(ValueError):
            gateway.transaction(unit)
        assert db_session.scalars(select(User)).first() is None

    def test_transaction_retries_the_whole_unit(self, gateway, db_session, wallet):
        attempts = []

        def unit(gw: PersistenceGateway):
            attempts.append(1)
            gw.create_user(wallet.address)
            if len(attempts) == 1:
                raise transient_error()
            return "done"

        assert gateway.transaction(unit) == "done"
        assert len(attempts) == 2
        assert len(list(db_session.scalars(select(User)))) == 1

    def test_transaction_past_timeout_is_rolled_back(self, db_session, no_sleep_policy, wallet):
        gateway = PersistenceGateway(db_session, retry_policy=no_sleep_policy, tx_timeout=0.0)
        calls = []

        def slow_unit(gw: PersistenceGateway):
            calls.append(1)
            gw.create_user(wallet.address)
            time.sleep(0.01)

        with pytest.raises(StoreTimeoutError):
            gateway.transaction(slow_unit)
        assert len(calls) == 1
        assert db_session.scalars(select(User)).first() is None
        assert gateway.in_transaction is False
