import typing
from datetime import datetime

import pytest
from _pytest.config.argparsing import Parser
from sqlalchemy.dialects import sqlite
from sqlalchemy.engine import Dialect

from entity_graph import Registry, Session, entity, field, many_to_one, one_to_many, one_to_one
from entity_graph.driver import Driver, Row


def pytest_addoption(parser: Parser) -> None:
    parser.addoption("--sqlalchemy-postgres-url", action="store", default=None)


FIRST_ORDER_TIME = datetime(2024, 10, 24, 1, 0, 0)
SECOND_ORDER_TIME = datetime(2024, 10, 24, 2, 0, 0)


class FakeDriver(Driver):
    """Returns queued row sets in order and records every statement it was given."""

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect
        self.executed: typing.List[typing.Tuple[str, typing.Sequence[typing.Any]]] = []
        self.results: typing.List[typing.List[Row]] = []

    def execute(self, sql: str, params: typing.Sequence[typing.Any]) -> typing.List[Row]:
        self.executed.append((sql, params))
        if not self.results:
            return []
        return self.results.pop(0)


@pytest.fixture()
def registry() -> Registry:
    return Registry().define(
        entity(
            "User",
            field("id", int, primary_key=True),
            field("name", str),
            one_to_one("shop", "Shop", owner=True, inverse="user"),
        ),
        entity(
            "Shop",
            field("id", int, primary_key=True),
            field("name", str),
            one_to_one("user", "User", inverse="shop"),
            one_to_many("orders", "Order", inverse="shop"),
        ),
        entity(
            "Order",
            field("id", int, primary_key=True),
            field("time", datetime),
            many_to_one("shop", "Shop"),
        ),
    )


@pytest.fixture()
def driver() -> FakeDriver:
    return FakeDriver(sqlite.dialect())


@pytest.fixture()
def session(registry: Registry, driver: FakeDriver) -> Session:
    return Session(registry, driver)


@pytest.fixture()
def expected_user() -> typing.Dict:
    return {
        "id": 1,
        "name": "User 1",
        "shop": {
            "id": 1,
            "name": "Shop 1",
            "user": 1,
            "orders": [
                {"id": 1, "time": FIRST_ORDER_TIME, "shop": 1},
                {"id": 2, "time": SECOND_ORDER_TIME, "shop": 1},
            ],
        },
    }
