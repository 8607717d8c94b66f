import abc
import typing

from sqlalchemy.engine import Dialect


Row = typing.Mapping[str, typing.Any]


class Driver(abc.ABC):
    """Executes SQL; connections, transactions, retries and cancellation all live behind this seam."""

    dialect: Dialect

    @abc.abstractmethod
    def execute(self, sql: str, params: typing.Sequence[typing.Any]) -> typing.Sequence[Row]:
        pass
