import typing

from sqlalchemy.engine import Connection, Dialect, Engine
from sqlalchemy.exc import SQLAlchemyError

from entity_graph.driver import Driver, Row
from entity_graph.exceptions import DriverError


class SqlAlchemyDriver(Driver):
    """Runs built SQL through an engine or an already open connection.

    The engine's dialect has to use a positional paramstyle, e.g.
    ``create_engine(url, paramstyle="format")`` for psycopg2.
    """

    def __init__(self, bind: typing.Union[Engine, Connection]) -> None:
        self._bind = bind

    @property
    def dialect(self) -> Dialect:
        return self._bind.dialect

    def execute(self, sql: str, params: typing.Sequence[typing.Any]) -> typing.List[Row]:
        try:
            if isinstance(self._bind, Connection):
                return self._fetch(self._bind, sql, params)
            with self._bind.connect() as connection:
                return self._fetch(connection, sql, params)
        except SQLAlchemyError as error:
            raise DriverError(str(error)) from error

    @staticmethod
    def _fetch(connection: Connection, sql: str, params: typing.Sequence[typing.Any]) -> typing.List[Row]:
        result = connection.exec_driver_sql(sql, tuple(params))
        return [dict(row._mapping) for row in result]
