import enum
import typing

import attr

from entity_graph.exceptions import ConfigurationError


class RelationKind(enum.Enum):
    ONE_TO_ONE = "one-to-one"
    MANY_TO_ONE = "many-to-one"
    ONE_TO_MANY = "one-to-many"


@attr.s(auto_attribs=True, frozen=True)
class Field:
    name: str
    type: typing.Type
    primary_key: bool = False
    nullable: bool = False
    column: typing.Optional[str] = None

    @property
    def column_name(self) -> str:
        return self.column or self.name


@attr.s(auto_attribs=True, frozen=True)
class Relation:
    """A relation slot of an entity.

    Only the owning side stores a foreign key column. ``inverse`` names the relation on the target entity
    pointing back, if there is one.
    """

    name: str
    kind: RelationKind
    target: str
    owner: bool = False
    inverse: typing.Optional[str] = None
    column: typing.Optional[str] = None
    nullable: bool = True

    @property
    def is_to_many(self) -> bool:
        return self.kind is RelationKind.ONE_TO_MANY


@attr.s(auto_attribs=True, frozen=True)
class EntityMetadata:
    name: str
    fields: typing.Tuple[Field, ...] = ()
    relations: typing.Tuple[Relation, ...] = ()
    table: typing.Optional[str] = None

    @property
    def primary_key(self) -> Field:
        primary_keys = [field for field in self.fields if field.primary_key]
        if len(primary_keys) != 1:
            raise ConfigurationError(f"{self.name} must declare exactly one primary key, got {len(primary_keys)}")
        return primary_keys[0]

    def field(self, name: str) -> Field:
        for field in self.fields:
            if field.name == name:
                return field
        raise ConfigurationError(f"{self.name} has no field {name!r}")

    def relation(self, name: str) -> Relation:
        for relation in self.relations:
            if relation.name == name:
                return relation
        raise ConfigurationError(f"{self.name} has no relation {name!r}")

    @property
    def member_names(self) -> typing.List[str]:
        return [field.name for field in self.fields] + [relation.name for relation in self.relations]

    def has_relation(self, name: str) -> bool:
        return any(relation.name == name for relation in self.relations)

    @property
    def owning_relations(self) -> typing.List[Relation]:
        return [relation for relation in self.relations if relation.owner]

    def column_attributes(self) -> typing.List[typing.Tuple[str, str]]:
        """(attribute, column) pairs physically stored in this entity's table, in declaration order."""
        pairs = [(field.name, field.column_name) for field in self.fields]
        for relation in self.owning_relations:
            if not relation.column:
                raise ConfigurationError(f"{self.name}.{relation.name} has no foreign key column, finalize registry")
            pairs.append((relation.name, relation.column))
        return pairs

    def column_for(self, attribute: str) -> str:
        for name, column in self.column_attributes():
            if name == attribute:
                return column
        raise ConfigurationError(f"{self.name} has no column for {attribute!r}")


def field(
    name: str,
    type_: typing.Type,
    primary_key: bool = False,
    nullable: bool = False,
    column: typing.Optional[str] = None,
) -> Field:
    return Field(name, type_, primary_key=primary_key, nullable=nullable, column=column)


def one_to_one(
    name: str,
    target: str,
    owner: bool = False,
    inverse: typing.Optional[str] = None,
    column: typing.Optional[str] = None,
    nullable: bool = True,
) -> Relation:
    return Relation(name, RelationKind.ONE_TO_ONE, target, owner=owner, inverse=inverse, column=column, nullable=nullable)


def many_to_one(
    name: str,
    target: str,
    inverse: typing.Optional[str] = None,
    column: typing.Optional[str] = None,
    nullable: bool = True,
) -> Relation:
    return Relation(name, RelationKind.MANY_TO_ONE, target, owner=True, inverse=inverse, column=column, nullable=nullable)


def one_to_many(name: str, target: str, inverse: str) -> Relation:
    return Relation(name, RelationKind.ONE_TO_MANY, target, owner=False, inverse=inverse)


def entity(
    name: str, *members: typing.Union[Field, Relation], table: typing.Optional[str] = None
) -> EntityMetadata:
    fields = tuple(member for member in members if isinstance(member, Field))
    relations = tuple(member for member in members if isinstance(member, Relation))
    return EntityMetadata(name, fields, relations, table)
