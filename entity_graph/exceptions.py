import typing


class EntityGraphError(Exception):
    pass


class ConfigurationError(EntityGraphError):
    pass


class DriverError(EntityGraphError):
    pass


class NotLoaded(EntityGraphError):
    pass


class IdentityConflict(EntityGraphError):
    def __init__(
        self, key: typing.Tuple[str, typing.Any], attribute: str, first: typing.Any = None, second: typing.Any = None
    ) -> None:
        super().__init__(f"{key[0]}#{key[1]}: conflicting values for {attribute!r} - {first!r} != {second!r}")
        self.key = key
        self.attribute = attribute
        self.first = first
        self.second = second
