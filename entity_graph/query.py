import enum
import typing

import attr
from sqlalchemy import false, literal_column, select
from sqlalchemy.engine import Dialect
from sqlalchemy.sql import ClauseElement, ColumnElement, FromClause, Select
from sqlalchemy.sql.compiler import ExpandedState, SQLCompiler

from entity_graph.exceptions import ConfigurationError
from entity_graph.metadata import EntityMetadata, Relation
from entity_graph.registry import Registry
from entity_graph.storages.sqlalchemy.types import to_storage


Resolver = typing.Callable[[typing.Any], ColumnElement]
Expression = typing.Union[str, ColumnElement, typing.Callable[[Resolver], ColumnElement]]

LABEL_SEPARATOR = "__"


class QueryOrder(enum.Enum):
    ASC = "asc"
    DESC = "desc"


def raw(sql: str) -> ColumnElement:
    """A verbatim SQL fragment usable wherever a column reference is accepted."""
    return literal_column(sql)


@attr.s(auto_attribs=True, frozen=True)
class Ordering:
    expression: Expression
    direction: QueryOrder = QueryOrder.ASC


@attr.s(auto_attribs=True, frozen=True)
class JoinSpec:
    source_alias: str
    relation: str
    target_alias: str
    source: typing.Optional["QueryBuilder"] = attr.ib(default=None, eq=False, repr=False)

    @classmethod
    def parse(cls, path: str, alias: str, source: typing.Optional["QueryBuilder"] = None) -> "JoinSpec":
        source_alias, dot, relation = path.partition(".")
        if not dot or not source_alias or not relation:
            raise ConfigurationError(f"Join path must look like 'alias.relation', got {path!r}")
        return cls(source_alias, relation, alias, source)


@attr.s(auto_attribs=True, frozen=True)
class BuiltQuery:
    sql: str
    params: typing.Tuple[typing.Any, ...]
    columns: typing.Dict[str, typing.Tuple[str, str]]
    aliases: typing.Dict[str, str]
    joins: typing.Tuple[JoinSpec, ...]
    root_alias: str


@attr.s(auto_attribs=True)
class _Scope:
    froms: typing.Dict[str, FromClause]
    metas: typing.Dict[str, EntityMetadata]
    root_alias: str

    def resolve(self, expression: Expression) -> ColumnElement:
        if isinstance(expression, str):
            alias, _, attribute = expression.rpartition(".")
            alias = alias or self.root_alias
            if alias not in self.metas:
                raise ConfigurationError(f"Unknown alias {alias!r} in {expression!r}")
            return self.froms[alias].c[self.metas[alias].column_for(attribute)]
        if callable(expression) and not isinstance(expression, ClauseElement):
            return expression(self.resolve)
        return expression


def _as_ordering(item: typing.Any) -> typing.List[Ordering]:
    if isinstance(item, Ordering):
        return [item]
    if isinstance(item, typing.Mapping):
        return [Ordering(expression, QueryOrder(direction)) for expression, direction in item.items()]
    if isinstance(item, tuple):
        expression, direction = item
        return [Ordering(expression, QueryOrder(direction))]
    return [Ordering(item)]


@attr.s(auto_attribs=True, frozen=True)
class QueryBuilder:
    """Immutable description of a root query; every configuration call returns a new builder.

    ``build`` is a pure function from the description and a dialect to SQL text, positional params and the
    column label map used for hydration.
    """

    registry: Registry = attr.ib(repr=False)
    entity: str
    alias: str
    joins: typing.Tuple[JoinSpec, ...] = ()
    criteria: typing.Tuple[typing.Any, ...] = ()
    orderings: typing.Tuple[Ordering, ...] = ()
    distinct: typing.Tuple[Expression, ...] = ()
    row_limit: typing.Optional[int] = None
    row_offset: typing.Optional[int] = None

    def left_join(self, path: str, alias: str, source: typing.Optional["QueryBuilder"] = None) -> "QueryBuilder":
        return attr.evolve(self, joins=self.joins + (JoinSpec.parse(path, alias, source),))

    def where(self, *criteria: typing.Any) -> "QueryBuilder":
        return attr.evolve(self, criteria=self.criteria + criteria)

    def order_by(self, *orderings: typing.Any) -> "QueryBuilder":
        parsed = tuple(ordering for item in orderings for ordering in _as_ordering(item))
        return attr.evolve(self, orderings=self.orderings + parsed)

    def distinct_on(self, *expressions: Expression) -> "QueryBuilder":
        return attr.evolve(self, distinct=self.distinct + expressions)

    def limit(self, limit: int) -> "QueryBuilder":
        return attr.evolve(self, row_limit=limit)

    def offset(self, offset: int) -> "QueryBuilder":
        return attr.evolve(self, row_offset=offset)

    def build(self, dialect: Dialect) -> BuiltQuery:
        statement, columns, scope = self.statement(dialect)
        compiled = statement.compile(dialect=dialect)
        if not compiled.positional:
            raise ConfigurationError(f"Dialect {dialect.name} must use a positional paramstyle")
        # expanding binds, e.g. IN lists, get one placeholder per value
        expanded = compiled.construct_expanded_state(escape_names=False)
        params = tuple(_bind_values(compiled, expanded, dialect))
        aliases = {alias: meta.name for alias, meta in scope.metas.items()}
        return BuiltQuery(expanded.statement, params, columns, aliases, self.joins, self.alias)

    def statement(self, dialect: Dialect) -> typing.Tuple[Select, typing.Dict[str, typing.Tuple[str, str]], _Scope]:
        joined, scope = self._compose(dialect)
        selected = []
        columns = {}
        for alias, meta in scope.metas.items():
            for attribute, column in meta.column_attributes():
                label = f"{alias}{LABEL_SEPARATOR}{attribute}"
                selected.append(scope.froms[alias].c[column].label(label))
                columns[label] = (alias, attribute)
        statement = self._apply_clauses(select(*selected).select_from(joined), scope, dialect)
        return statement, columns, scope

    def subquery(self, name: str, dialect: Dialect) -> FromClause:
        """Derived table projecting the root entity's columns under their plain names."""
        joined, scope = self._compose(dialect)
        root = scope.froms[self.alias]
        selected = [root.c[column] for _, column in scope.metas[self.alias].column_attributes()]
        return self._apply_clauses(select(*selected).select_from(joined), scope, dialect).subquery(name)

    def _compose(self, dialect: Dialect) -> typing.Tuple[FromClause, _Scope]:
        root_meta = self.registry.describe(self.entity)
        root = self.registry.table(self.entity).alias(self.alias)
        scope = _Scope({self.alias: root}, {self.alias: root_meta}, self.alias)
        joined: FromClause = root

        for join in self.joins:
            if join.source_alias not in scope.metas:
                raise ConfigurationError(f"Unknown join source alias {join.source_alias!r}")
            if join.target_alias in scope.metas:
                raise ConfigurationError(f"Alias {join.target_alias!r} is used twice")
            source_meta = scope.metas[join.source_alias]
            relation = source_meta.relation(join.relation)
            target_meta = self.registry.describe(relation.target)

            if join.source is not None:
                if join.source.entity != relation.target:
                    raise ConfigurationError(
                        f"Join source for {join.source_alias}.{join.relation} must query {relation.target}, "
                        f"not {join.source.entity}"
                    )
                target = join.source.subquery(join.target_alias, dialect)
            else:
                target = self.registry.table(relation.target).alias(join.target_alias)

            onclause = _join_condition(scope.froms[join.source_alias], source_meta, relation, target, target_meta)
            joined = joined.outerjoin(target, onclause)
            scope.froms[join.target_alias] = target
            scope.metas[join.target_alias] = target_meta

        return joined, scope

    def _apply_clauses(self, statement: Select, scope: _Scope, dialect: Dialect) -> Select:
        for criterion in self.criteria:
            statement = statement.where(*_criteria(criterion, scope))

        if self.distinct:
            if dialect.name != "postgresql":
                raise ConfigurationError(f"DISTINCT ON is not supported by {dialect.name}")
            distinct = [scope.resolve(expression) for expression in self.distinct]
            _check_distinct_on(distinct, [scope.resolve(o.expression) for o in self.orderings], dialect)
            statement = statement.distinct(*distinct)

        for ordering in self.orderings:
            expression = scope.resolve(ordering.expression)
            statement = statement.order_by(expression.desc() if ordering.direction is QueryOrder.DESC else expression)

        if self.row_limit is not None:
            statement = statement.limit(self.row_limit)
        if self.row_offset is not None:
            statement = statement.offset(self.row_offset)
        return statement


def _join_condition(
    source: FromClause, source_meta: EntityMetadata, relation: Relation, target: FromClause, target_meta: EntityMetadata
) -> ColumnElement:
    if relation.owner:
        return target.c[target_meta.primary_key.column_name] == source.c[relation.column]
    owning = target_meta.relation(relation.inverse)
    return target.c[owning.column] == source.c[source_meta.primary_key.column_name]


def _criteria(criterion: typing.Any, scope: _Scope) -> typing.List[ColumnElement]:
    if not isinstance(criterion, typing.Mapping):
        return [scope.resolve(criterion)]

    clauses = []
    for reference, value in criterion.items():
        column = scope.resolve(reference)
        if value is None:
            clauses.append(column.is_(None))
        elif isinstance(value, (list, tuple, set, frozenset)) and not value:
            clauses.append(false())
        elif isinstance(value, (list, tuple, set, frozenset)):
            clauses.append(column.in_(list(value)))
        else:
            clauses.append(column == value)
    return clauses


def _bind_values(compiled: SQLCompiler, expanded: ExpandedState, dialect: Dialect) -> typing.Iterator[typing.Any]:
    """Positional values passed through each bind's type processor, as the DBAPI would receive them."""
    for name in expanded.positiontup or ():
        value = expanded.parameters[name]
        processor = expanded.processors.get(name)
        if processor is None and name in compiled.binds:
            processor = compiled.binds[name].type.dialect_impl(dialect).bind_processor(dialect)
        if processor is not None:
            value = processor(value)
        yield to_storage(value)


def _check_distinct_on(distinct: typing.List[ColumnElement], order: typing.List[ColumnElement], dialect: Dialect) -> None:
    def render(expression: ColumnElement) -> str:
        return str(expression.compile(dialect=dialect))

    leading = order[: len(distinct)]
    if len(leading) < len(distinct) or {render(e) for e in leading} != {render(e) for e in distinct}:
        raise ConfigurationError(
            "DISTINCT ON expressions must match the leading ORDER BY expressions: "
            f"{[render(e) for e in distinct]} vs {[render(e) for e in order]}"
        )
