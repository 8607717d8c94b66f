import typing
from datetime import datetime

import pytest

from entity_graph import QueryOrder, Session, raw
from entity_graph.query import QueryBuilder


def latest_per_day(session: Session) -> QueryBuilder:
    day = raw('cast("orders"."time" as date)')
    return (
        session.query("Order", "orders")
        .distinct_on(day, "shop")
        .order_by({day: QueryOrder.DESC, "shop": QueryOrder.DESC})
        .order_by(("id", QueryOrder.DESC))
    )


def test_subquery_join_keeps_latest_order_per_day(pg_session: Session) -> None:
    query = (
        pg_session.query("User")
        .left_join("user.shop", "shop")
        .left_join("shop.orders", "orders", latest_per_day(pg_session))
    )

    users = pg_session.get_result(query)

    assert [order.id for order in users[0].shop.get().orders] == [2]
    assert pg_session.serialize(users[0], ["shop", "shop.orders"])["shop"]["orders"] == [
        {"id": 2, "time": datetime(2024, 10, 24, 2, 0, 0), "shop": 1}
    ]


def test_manual_hydration_then_populate(pg_session: Session) -> None:
    query = (
        pg_session.query("User")
        .left_join("user.shop", "shop")
        .left_join("shop.orders", "orders", latest_per_day(pg_session))
    )
    users = pg_session.hydrate(query, pg_session.execute(query))

    pg_session.populate(users, ["shop", "shop.orders"])

    assert [order.id for order in users[0].shop.get().orders] == [2]


class TestOrdersOnDifferentDays:
    @pytest.fixture()
    def orders(self) -> typing.List[typing.Dict]:
        return [
            {"id": 1, "time": datetime(2024, 10, 23, 1, 0, 0), "shop_id": 1},
            {"id": 2, "time": datetime(2024, 10, 24, 2, 0, 0), "shop_id": 1},
            {"id": 3, "time": datetime(2024, 10, 24, 1, 0, 0), "shop_id": 1},
        ]

    def test_keeps_highest_id_per_day(self, pg_session: Session) -> None:
        query = (
            pg_session.query("User")
            .left_join("user.shop", "shop")
            .left_join("shop.orders", "orders", latest_per_day(pg_session))
        )

        users = pg_session.get_result(query)

        assert sorted(order.id for order in users[0].shop.get().orders) == [1, 3]
