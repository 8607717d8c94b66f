import typing
import uuid
from datetime import date, datetime
from decimal import Decimal
from functools import singledispatch


@singledispatch
def to_storage(argument: typing.Any) -> typing.Any:
    return argument


@to_storage.register(uuid.UUID)
def _(argument: uuid.UUID) -> str:
    return str(argument)


def _to_datetime(argument: typing.Any) -> datetime:
    if isinstance(argument, str):
        return datetime.fromisoformat(argument)
    return argument


def _to_date(argument: typing.Any) -> date:
    if isinstance(argument, datetime):
        return argument.date()
    if isinstance(argument, str):
        return date.fromisoformat(argument[:10])
    return argument


def _to_uuid(argument: typing.Any) -> uuid.UUID:
    if isinstance(argument, bytes):
        return uuid.UUID(bytes=argument)
    return uuid.UUID(str(argument))


mapping: typing.Dict[typing.Type, typing.Callable[[typing.Any], typing.Any]] = {
    uuid.UUID: _to_uuid,
    datetime: _to_datetime,
    date: _to_date,
    bool: bool,
    Decimal: lambda argument: Decimal(str(argument)),
}


def from_storage(argument: typing.Any, field_type: typing.Type) -> typing.Any:
    """Coerce a raw driver value to the declared python type; drivers may skip type processing."""
    if argument is None or type(argument) is field_type:
        return argument
    try:
        converter = mapping[field_type]
    except KeyError:
        return argument
    return converter(argument)
