import uuid
import typing
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, Float, Integer, Numeric, String, Uuid

from entity_graph.exceptions import ConfigurationError


mapping = {
    int: Integer,
    str: String(255),
    uuid.UUID: Uuid,
    float: Float,
    bool: Boolean,
    Decimal: Numeric,
    datetime: DateTime,
    date: Date,
}


def convert(arg: typing.Type) -> typing.Any:
    try:
        return mapping[arg]
    except KeyError:
        raise ConfigurationError(f"Unsupported type - {arg}")
