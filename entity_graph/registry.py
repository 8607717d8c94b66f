import typing

import attr
import inflection
from sqlalchemy import Column, ForeignKey, MetaData, Table

from entity_graph.exceptions import ConfigurationError
from entity_graph.metadata import EntityMetadata, Relation, RelationKind
from entity_graph.storages.sqlalchemy import native_type_to_column


_COMPLEMENTARY_KINDS = {
    RelationKind.ONE_TO_ONE: RelationKind.ONE_TO_ONE,
    RelationKind.MANY_TO_ONE: RelationKind.ONE_TO_MANY,
    RelationKind.ONE_TO_MANY: RelationKind.MANY_TO_ONE,
}


# attributes of EntityInstance that would hide a field or relation of the same name
RESERVED_NAMES = frozenset(
    ["meta", "identity", "key", "managed", "mark_managed", "get", "set", "slot", "scalars"]
)


def default_table_name(entity_name: str) -> str:
    return inflection.pluralize(inflection.underscore(entity_name))


@attr.s(auto_attribs=True)
class Registry:
    """Static description of entity types, loaded once per process.

    Entities are declared with :meth:`define`; the first :meth:`describe` call finalizes the registry: relation
    pairs are cross-checked, foreign key columns are named and a SQLAlchemy ``Table`` is materialized per entity.
    """

    entities: typing.Dict[str, EntityMetadata] = attr.Factory(dict)
    _metadata: MetaData = attr.ib(factory=MetaData, init=False, repr=False)
    _tables: typing.Dict[str, Table] = attr.ib(factory=dict, init=False, repr=False)
    finalized: bool = attr.ib(default=False, init=False)

    @property
    def metadata(self) -> MetaData:
        self.finalize()
        return self._metadata

    @property
    def tables(self) -> typing.Dict[str, Table]:
        self.finalize()
        return dict(self._tables)

    def define(self, *entities: EntityMetadata) -> "Registry":
        if self.finalized:
            raise ConfigurationError("Registry is already finalized")
        for entity in entities:
            if entity.name in self.entities:
                raise ConfigurationError(f"Entity {entity.name} defined twice")
            self.entities[entity.name] = entity
        return self

    def describe(self, name: str) -> EntityMetadata:
        self.finalize()
        try:
            return self.entities[name]
        except KeyError:
            raise ConfigurationError(f"Unknown entity - {name}")

    def table(self, name: str) -> Table:
        self.describe(name)
        return self._tables[name]

    def finalize(self) -> None:
        if self.finalized:
            return
        for entity in self.entities.values():
            entity.primary_key  # raises when missing or ambiguous
            self._check_names(entity)
            for relation in entity.relations:
                self._check_relation(entity, relation)

        self.entities = {name: self._with_columns(entity) for name, entity in self.entities.items()}
        for entity in self.entities.values():
            self._tables[entity.name] = self._materialize(entity)
        self.finalized = True

    def _check_names(self, entity: EntityMetadata) -> None:
        reserved = sorted(RESERVED_NAMES.intersection(entity.member_names))
        if reserved:
            raise ConfigurationError(f"{entity.name} uses reserved attribute names {reserved}")

    def _check_relation(self, entity: EntityMetadata, relation: Relation) -> None:
        if relation.target not in self.entities:
            raise ConfigurationError(f"{entity.name}.{relation.name} targets unknown entity {relation.target}")
        if relation.kind is RelationKind.MANY_TO_ONE and not relation.owner:
            raise ConfigurationError(f"{entity.name}.{relation.name}: many-to-one is always the owning side")
        if relation.kind is RelationKind.ONE_TO_MANY and relation.owner:
            raise ConfigurationError(f"{entity.name}.{relation.name}: one-to-many can not own a foreign key")
        if not relation.owner and not relation.inverse:
            raise ConfigurationError(f"{entity.name}.{relation.name}: inverse side must name its owning relation")
        if not relation.inverse:
            return

        target = self.entities[relation.target]
        if not target.has_relation(relation.inverse):
            raise ConfigurationError(
                f"{entity.name}.{relation.name}: inverse {relation.target}.{relation.inverse} does not exist"
            )
        other = target.relation(relation.inverse)
        if other.target != entity.name or other.kind is not _COMPLEMENTARY_KINDS[relation.kind]:
            raise ConfigurationError(
                f"{entity.name}.{relation.name} and {target.name}.{other.name} do not form a relation pair"
            )
        if other.inverse not in (None, relation.name):
            raise ConfigurationError(f"{target.name}.{other.name} points back to {other.inverse}, not {relation.name}")
        if relation.owner == other.owner:
            raise ConfigurationError(
                f"{entity.name}.{relation.name} and {target.name}.{other.name} must have exactly one owning side"
            )

    def _with_columns(self, entity: EntityMetadata) -> EntityMetadata:
        relations = []
        for relation in entity.relations:
            if relation.owner and not relation.column:
                target_pk = self.entities[relation.target].primary_key
                relation = attr.evolve(relation, column=f"{relation.name}_{target_pk.column_name}")
            if not relation.inverse:
                relation = attr.evolve(relation, inverse=self._find_inverse(entity, relation))
            relations.append(relation)
        return attr.evolve(entity, relations=tuple(relations))

    def _find_inverse(self, entity: EntityMetadata, relation: Relation) -> typing.Optional[str]:
        # inverse declared only on the other side of the pair
        for other in self.entities[relation.target].relations:
            if other.target == entity.name and other.inverse == relation.name:
                return other.name
        return None

    def _materialize(self, entity: EntityMetadata) -> Table:
        columns = []
        for field in entity.fields:
            columns.append(
                Column(
                    field.column_name,
                    native_type_to_column.convert(field.type),
                    primary_key=field.primary_key,
                    nullable=field.nullable and not field.primary_key,
                )
            )
        for relation in entity.owning_relations:
            target = self.entities[relation.target]
            target_pk = target.primary_key
            columns.append(
                Column(
                    relation.column,
                    native_type_to_column.convert(target_pk.type),
                    ForeignKey(f"{target.table or default_table_name(target.name)}.{target_pk.column_name}"),
                    nullable=relation.nullable,
                    unique=relation.kind is RelationKind.ONE_TO_ONE,
                )
            )
        return Table(entity.table or default_table_name(entity.name), self._metadata, *columns)
