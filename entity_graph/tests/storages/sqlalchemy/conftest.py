import typing
from datetime import datetime

import pytest
from sqlalchemy.engine import Engine

from entity_graph import Registry, Session, SessionOptions
from entity_graph.storages.sqlalchemy import SqlAlchemyDriver


ORDERS = [
    {"id": 1, "time": datetime(2024, 10, 24, 1, 0, 0), "shop_id": 1},
    {"id": 2, "time": datetime(2024, 10, 24, 2, 0, 0), "shop_id": 1},
]


def seed(registry: Registry, engine: Engine, orders: typing.List[typing.Dict]) -> None:
    registry.metadata.drop_all(engine)
    registry.metadata.create_all(engine)
    with engine.begin() as connection:
        connection.execute(registry.table("Shop").insert(), [{"id": 1, "name": "Shop 1"}])
        connection.execute(registry.table("User").insert(), [{"id": 1, "name": "User 1", "shop_id": 1}])
        connection.execute(registry.table("Order").insert(), orders)


@pytest.fixture()
def orders() -> typing.List[typing.Dict]:
    return ORDERS


@pytest.fixture()
def sqlite_session(
    registry: Registry, sqlite_engine: Engine, orders: typing.List[typing.Dict]
) -> typing.Generator[Session, None, None]:
    seed(registry, sqlite_engine, orders)
    yield Session(registry, SqlAlchemyDriver(sqlite_engine), SessionOptions(log_queries=True))
    sqlite_engine.dispose()


@pytest.fixture()
def pg_session(
    registry: Registry, engine: Engine, orders: typing.List[typing.Dict]
) -> typing.Generator[Session, None, None]:
    seed(registry, engine, orders)
    yield Session(registry, SqlAlchemyDriver(engine), SessionOptions(log_queries=True))
    registry.metadata.drop_all(engine)
    engine.dispose()
