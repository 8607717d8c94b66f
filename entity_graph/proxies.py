import typing

from entity_graph.exceptions import NotLoaded
from entity_graph.metadata import Relation

if typing.TYPE_CHECKING:
    from entity_graph.entity import EntityInstance


class Reference:
    """To-one relation slot.

    Either unresolved, knowing at most the identity of the referenced row, or resolved to a loaded entity
    (or to ``None`` when the relation is known to be empty). Resolution never happens on attribute access.
    """

    def __init__(self, relation: Relation, identity: typing.Any = None) -> None:
        self.relation = relation
        self._identity = identity
        self._entity: typing.Optional["EntityInstance"] = None
        self._initialized = False

    @property
    def identity(self) -> typing.Any:
        if self._entity is not None:
            return self._entity.identity
        return self._identity

    def is_initialized(self) -> bool:
        return self._initialized

    def resolve(self, entity: typing.Optional["EntityInstance"]) -> None:
        self._entity = entity
        self._identity = entity.identity if entity is not None else None
        self._initialized = True

    def unresolve(self, identity: typing.Any) -> None:
        self._entity = None
        self._identity = identity
        self._initialized = False

    def get(self) -> typing.Optional["EntityInstance"]:
        if not self._initialized:
            raise NotLoaded(f"Reference {self.relation.name} ({self.identity!r}) is not loaded")
        return self._entity

    unwrap = get

    def __repr__(self) -> str:
        state = "loaded" if self._initialized else "unloaded"
        return f"<Reference {self.relation.target}#{self.identity!r} {state}>"


class Collection:
    """To-many relation slot with order-preserving, identity-deduplicated membership."""

    def __init__(self, owner: "EntityInstance", relation: Relation) -> None:
        self.owner = owner
        self.relation = relation
        self._items: typing.List["EntityInstance"] = []
        self._keys: typing.Set[typing.Any] = set()
        self._initialized = False

    def is_initialized(self) -> bool:
        return self._initialized

    def items(self) -> typing.List["EntityInstance"]:
        if not self._initialized:
            raise NotLoaded(f"Collection {self.relation.name} of {self.owner!r} is not initialized")
        return list(self._items)

    def contains(self, entity: "EntityInstance") -> bool:
        return _member_key(entity) in self._keys

    def add(self, entity: "EntityInstance") -> bool:
        key = _member_key(entity)
        if key in self._keys:
            return False
        self._keys.add(key)
        self._items.append(entity)
        return True

    def reset(self) -> None:
        self._items = []
        self._keys = set()
        self._initialized = True

    def hydrate(self, entities: typing.Iterable["EntityInstance"]) -> None:
        self.reset()
        for entity in entities:
            self.add(entity)

    def __iter__(self) -> typing.Iterator["EntityInstance"]:
        return iter(self.items())

    def __len__(self) -> int:
        return len(self.items())

    def __repr__(self) -> str:
        if not self._initialized:
            return f"<Collection {self.relation.target} not initialized>"
        return f"<Collection {self.relation.target} {[item.identity for item in self._items]!r}>"


def _member_key(entity: "EntityInstance") -> typing.Any:
    if entity.identity is None:
        return id(entity)
    return entity.key
