import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError

from backend.app.db.models.models_v1 import Unit
from backend.services.errors import TransactionConflictError
from backend.services.uow import is_serialization_failure, transaction


class FakeDriverError(Exception):
    def __init__(self, message, sqlstate=None):
        super().__init__(message)
        self.sqlstate = sqlstate


def _dbapi_error(orig):
    return DBAPIError("UPDATE inventory_items ...", {}, orig)


@pytest.mark.parametrize(
    "orig, expected",
    [
        (FakeDriverError("could not serialize access", "40001"), True),
        (FakeDriverError("deadlock detected", "40P01"), True),
        (FakeDriverError("database is locked"), True),
        (FakeDriverError("duplicate key", "23505"), False),
    ],
)
def test_serialization_failure_detection(orig, expected):
    assert is_serialization_failure(_dbapi_error(orig)) is expected


def test_conflict_rolls_back_and_is_retryable(db_session):
    with pytest.raises(TransactionConflictError) as exc:
        with transaction(db_session):
            db_session.add(Unit(name="BOX"))
            db_session.flush()
            raise _dbapi_error(FakeDriverError("could not serialize access", "40001"))

    assert exc.value.retryable is True
    assert db_session.scalar(select(func.count()).select_from(Unit)) == 0


def test_any_error_rolls_back(db_session):
    with pytest.raises(RuntimeError):
        with transaction(db_session):
            db_session.add(Unit(name="BOX"))
            db_session.flush()
            raise RuntimeError("boom")

    assert db_session.scalar(select(func.count()).select_from(Unit)) == 0
