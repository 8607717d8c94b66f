import typing

import attr

from entity_graph.entity import EntityInstance, IdentityKey
from entity_graph.exceptions import ConfigurationError, IdentityConflict
from entity_graph.metadata import EntityMetadata


@attr.s(auto_attribs=True)
class IdentityMap:
    """Session scoped cache holding at most one instance per (entity type, primary key)."""

    entities: typing.Dict[IdentityKey, EntityInstance] = attr.Factory(dict)

    def get(self, entity_name: str, identity: typing.Any) -> typing.Optional[EntityInstance]:
        return self.entities.get((entity_name, identity))

    def add(self, entity: EntityInstance) -> EntityInstance:
        if entity.identity is None:
            raise ConfigurationError(f"Can not register {entity.meta.name} without a primary key")
        existing = self.entities.get(entity.key)
        if existing is not None and existing is not entity:
            raise IdentityConflict(entity.key, entity.meta.primary_key.name, existing, entity)
        self.entities[entity.key] = entity
        entity.mark_managed()
        return entity

    def get_or_create(self, meta: EntityMetadata, identity: typing.Any) -> typing.Tuple[EntityInstance, bool]:
        existing = self.get(meta.name, identity)
        if existing is not None:
            return existing, False
        entity = EntityInstance(meta)
        entity.set(meta.primary_key.name, identity)
        return self.add(entity), True

    def remove(self, entity: EntityInstance) -> None:
        if self.entities.get(entity.key) is entity:
            del self.entities[entity.key]

    def clear(self) -> None:
        self.entities.clear()

    def __contains__(self, key: IdentityKey) -> bool:
        return key in self.entities

    def __len__(self) -> int:
        return len(self.entities)

    def __iter__(self) -> typing.Iterator[EntityInstance]:
        return iter(list(self.entities.values()))
