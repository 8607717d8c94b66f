import typing

from entity_graph.exceptions import ConfigurationError, IdentityConflict
from entity_graph.metadata import EntityMetadata
from entity_graph.proxies import Collection, Reference


IdentityKey = typing.Tuple[str, typing.Any]
Slot = typing.Union[Reference, Collection]


class EntityInstance:
    """Mutable record of scalar values plus one relation slot per declared relation.

    Attribute access reads scalars and returns relation slots as they are; nothing is loaded implicitly.
    """

    def __init__(self, meta: EntityMetadata) -> None:
        self._meta = meta
        self._values: typing.Dict[str, typing.Any] = {field.name: None for field in meta.fields}
        self._slots: typing.Dict[str, Slot] = {}
        self._managed = False
        for relation in meta.relations:
            if relation.is_to_many:
                self._slots[relation.name] = Collection(self, relation)
            else:
                self._slots[relation.name] = Reference(relation)

    @property
    def meta(self) -> EntityMetadata:
        return self._meta

    @property
    def identity(self) -> typing.Any:
        return self._values.get(self._meta.primary_key.name)

    @property
    def key(self) -> IdentityKey:
        return self._meta.name, self.identity

    @property
    def managed(self) -> bool:
        return self._managed

    def mark_managed(self) -> None:
        self._managed = True

    def get(self, name: str) -> typing.Any:
        if name in self._slots:
            return self._slots[name]
        self._meta.field(name)
        return self._values.get(name)

    def slot(self, name: str) -> Slot:
        try:
            return self._slots[name]
        except KeyError:
            raise ConfigurationError(f"{self._meta.name} has no relation {name!r}")

    def scalars(self) -> typing.Dict[str, typing.Any]:
        return dict(self._values)

    def set(self, name: str, value: typing.Any) -> None:
        if name in self._slots:
            self._assign_relation(name, value)
            return
        field = self._meta.field(name)
        if field.primary_key and self._managed and value != self.identity:
            raise IdentityConflict(self.key, name, self.identity, value)
        self._values[name] = value

    def _assign_relation(self, name: str, value: typing.Any) -> None:
        slot = self._slots[name]
        if isinstance(slot, Collection):
            slot.hydrate(value)
        elif value is None or isinstance(value, EntityInstance):
            slot.resolve(value)
        else:
            slot.unresolve(value)

    def __getattr__(self, name: str) -> typing.Any:
        if name.startswith("_"):
            raise AttributeError(name)
        if name in self._slots:
            return self._slots[name]
        if name in self._values:
            return self._values[name]
        raise AttributeError(f"{self._meta.name} has no attribute {name!r}")

    def __repr__(self) -> str:
        return f"<{self._meta.name}#{self.identity!r}>"
