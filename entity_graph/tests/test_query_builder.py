from datetime import datetime

import pytest
from sqlalchemy import Date, cast
from sqlalchemy.dialects import postgresql, sqlite

from entity_graph import ConfigurationError, QueryOrder, Session, raw
from entity_graph.query import QueryBuilder


def normalized(sql: str) -> str:
    return " ".join(sql.replace('"', "").split())


@pytest.fixture()
def postgres_dialect() -> postgresql.dialect:
    return postgresql.dialect(paramstyle="format")


@pytest.fixture()
def sampled_orders(session: Session) -> QueryBuilder:
    return (
        session.query("Order", "orders")
        .distinct_on(raw('cast("orders"."time" as date)'), "shop")
        .order_by({raw('cast("orders"."time" as date)'): QueryOrder.DESC, "shop": QueryOrder.DESC})
        .order_by(("id", QueryOrder.DESC))
    )


def test_builder_is_immutable(session: Session) -> None:
    base = session.query("User")
    joined = base.left_join("user.shop", "shop")

    assert base.joins == ()
    assert len(joined.joins) == 1
    assert joined.joins[0].source_alias == "user" and joined.joins[0].target_alias == "shop"


def test_builds_left_joins_and_column_labels(session: Session) -> None:
    built = session.build(
        session.query("User").left_join("user.shop", "shop").left_join("shop.orders", "orders").order_by("orders.id")
    )
    sql = normalized(built.sql)

    assert "FROM users AS user LEFT OUTER JOIN shops AS shop ON shop.id = user.shop_id" in sql
    assert "LEFT OUTER JOIN orders AS orders ON orders.shop_id = shop.id" in sql
    assert sql.endswith("ORDER BY orders.id")
    assert built.columns == {
        "user__id": ("user", "id"),
        "user__name": ("user", "name"),
        "user__shop": ("user", "shop"),
        "shop__id": ("shop", "id"),
        "shop__name": ("shop", "name"),
        "orders__id": ("orders", "id"),
        "orders__time": ("orders", "time"),
        "orders__shop": ("orders", "shop"),
    }
    assert built.aliases == {"user": "User", "shop": "Shop", "orders": "Order"}
    assert built.root_alias == "user"
    assert built.params == ()


@pytest.mark.parametrize(
    "entity, path, expected",
    [
        ("User", "user.shop", "ON shop.id = user.shop_id"),
        ("Shop", "shop.user", "ON target.shop_id = shop.id"),
        ("Shop", "shop.orders", "ON target.shop_id = shop.id"),
        ("Order", "order.shop", "ON target.id = order.shop_id"),
    ],
)
def test_join_condition_follows_owning_side(session: Session, entity: str, path: str, expected: str) -> None:
    alias = "shop" if path == "user.shop" else "target"

    built = session.build(session.query(entity).left_join(path, alias))

    assert expected in normalized(built.sql)


def test_positional_params_follow_placeholder_order(session: Session) -> None:
    built = session.build(session.query("User").where({"name": "User 1", "id": [3, 4]}).limit(5).offset(10))
    sql = normalized(built.sql)

    assert "WHERE user.name = ? AND user.id IN (?, ?)" in sql
    assert "LIMIT ? OFFSET ?" in sql
    assert built.params == ("User 1", 3, 4, 5, 10)


def test_empty_key_list_matches_nothing(session: Session) -> None:
    built = session.build(session.query("Order").where({"shop": []}))

    assert built.params == ()
    assert "IN" not in normalized(built.sql)


def test_expanding_criteria_render_one_placeholder_per_value(session: Session) -> None:
    built = session.build(session.query("Order", "orders").where(lambda column: column("orders.id").in_([1, 2])))

    assert "WHERE orders.id IN (?, ?)" in normalized(built.sql)
    assert "POSTCOMPILE" not in built.sql
    assert built.params == (1, 2)


def test_params_go_through_column_type_processing(session: Session) -> None:
    built = session.build(session.query("Order").where({"time": datetime(2024, 10, 24, 1, 0, 0)}))

    assert built.params == ("2024-10-24 01:00:00.000000",)


def test_accepts_callables_and_raw_criteria(session: Session) -> None:
    built = session.build(
        session.query("Order", "orders")
        .where(lambda column: column("orders.shop").is_not(None))
        .where(raw("orders.id > 1"))
    )

    assert "WHERE orders.shop_id IS NOT NULL AND orders.id > 1" in normalized(built.sql)


def test_joins_against_derived_subquery(
    session: Session, sampled_orders: QueryBuilder, postgres_dialect: postgresql.dialect
) -> None:
    query = session.query("User").left_join("user.shop", "shop").left_join("shop.orders", "orders", sampled_orders)

    built = query.build(postgres_dialect)
    sql = normalized(built.sql)

    assert "LEFT OUTER JOIN (SELECT DISTINCT ON (cast(orders.time as date), orders.shop_id) orders.id" in sql
    assert "ORDER BY cast(orders.time as date) DESC, orders.shop_id DESC, orders.id DESC) AS orders" in sql
    assert sql.endswith("AS orders ON orders.shop_id = shop.id")
    assert built.columns["orders__time"] == ("orders", "time")
    assert built.params == ()


def test_distinct_on_accepts_column_expressions(session: Session, postgres_dialect: postgresql.dialect) -> None:
    def day(column):
        return cast(column("orders.time"), Date)

    query = session.query("Order", "orders").distinct_on(day).order_by((day, QueryOrder.DESC), "id")

    assert "DISTINCT ON (CAST(orders.time AS DATE))" in normalized(query.build(postgres_dialect).sql)


@pytest.mark.parametrize(
    "orderings",
    [
        [],
        [("id", QueryOrder.DESC)],
        [("shop", QueryOrder.DESC), ("id", QueryOrder.DESC), (raw('cast("orders"."time" as date)'), QueryOrder.DESC)],
    ],
)
def test_distinct_on_requires_matching_order_prefix(
    session: Session, postgres_dialect: postgresql.dialect, orderings: list
) -> None:
    query = session.query("Order", "orders").distinct_on(raw('cast("orders"."time" as date)'), "shop")

    with pytest.raises(ConfigurationError):
        query.order_by(*orderings).build(postgres_dialect)


def test_distinct_on_is_postgres_only(sampled_orders: QueryBuilder) -> None:
    with pytest.raises(ConfigurationError):
        sampled_orders.build(sqlite.dialect())


def test_rejects_non_positional_paramstyle(session: Session) -> None:
    with pytest.raises(ConfigurationError):
        session.query("User").build(postgresql.dialect(paramstyle="pyformat"))


@pytest.mark.parametrize(
    "make_query",
    [
        lambda query: query.left_join("shop.orders", "orders"),
        lambda query: query.left_join("user.orders", "orders"),
        lambda query: query.left_join("user.shop", "user"),
        lambda query: query.left_join("usershop", "shop"),
        lambda query: query.order_by("user.email"),
        lambda query: query.where({"missing.id": 1}),
    ],
)
def test_invalid_queries_fail_at_build_time(session: Session, make_query) -> None:
    with pytest.raises(ConfigurationError):
        session.build(make_query(session.query("User")))


def test_join_source_must_query_relation_target(session: Session) -> None:
    query = session.query("User").left_join("user.shop", "shop", session.query("Order", "orders"))

    with pytest.raises(ConfigurationError):
        session.build(query)
