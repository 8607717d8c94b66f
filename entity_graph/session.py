import logging
import typing

import attr
import inflection

from entity_graph import populate_tree
from entity_graph.driver import Driver, Row
from entity_graph.entity import EntityInstance
from entity_graph.exceptions import ConfigurationError, IdentityConflict
from entity_graph.hydrator import Hydrator
from entity_graph.identity_map import IdentityMap
from entity_graph.populator import PopulatingVisitor
from entity_graph.query import BuiltQuery, QueryBuilder
from entity_graph.registry import Registry
from entity_graph.serializer import Serializer, UnloadedCollections


logger = logging.getLogger(__name__)

Query = typing.Union[QueryBuilder, BuiltQuery]
Populate = typing.Union[typing.Iterable[str], populate_tree.PopulateTree, None]


@attr.s(auto_attribs=True, frozen=True)
class SessionOptions:
    log_queries: bool = False
    unloaded_collections: UnloadedCollections = attr.ib(
        default=UnloadedCollections.OMIT, converter=UnloadedCollections
    )


class Session:
    """One unit of work: an identity map plus the operations that read into and out of it.

    Not safe for concurrent use; independent sessions share nothing mutable.
    """

    def __init__(self, registry: Registry, driver: Driver, options: typing.Optional[SessionOptions] = None) -> None:
        self.registry = registry
        self.driver = driver
        self.options = options or SessionOptions()
        self.identity_map = IdentityMap()
        self.conflicts: typing.List[IdentityConflict] = []
        self._hydrator = Hydrator(registry, self.identity_map)
        self._serializer = Serializer(self.options.unloaded_collections)

    def query(self, entity: str, alias: typing.Optional[str] = None) -> QueryBuilder:
        self.registry.describe(entity)
        return QueryBuilder(self.registry, entity, alias or inflection.underscore(entity))

    def build(self, query: Query) -> BuiltQuery:
        if isinstance(query, BuiltQuery):
            return query
        return query.build(self.driver.dialect)

    def execute(self, query: Query) -> typing.List[Row]:
        built = self.build(query)
        log = logger.info if self.options.log_queries else logger.debug
        log("query: %s params: %r", built.sql, built.params)
        return list(self.driver.execute(built.sql, built.params))

    def hydrate(self, query: Query, rows: typing.Iterable[Row]) -> typing.List[EntityInstance]:
        result = self._hydrator.hydrate(rows, self.build(query))
        self.conflicts.extend(result.conflicts)
        return result.roots

    def get_result(self, query: Query) -> typing.List[EntityInstance]:
        built = self.build(query)
        return self.hydrate(built, self.execute(built))

    def find(
        self,
        entity: str,
        where: typing.Optional[typing.Mapping[str, typing.Any]] = None,
        order_by: typing.Sequence[typing.Any] = (),
        populate: Populate = (),
    ) -> typing.List[EntityInstance]:
        tree = self._tree(entity, populate)
        query = self.query(entity)
        if where:
            query = query.where(where)
        if order_by:
            query = query.order_by(*order_by)
        return self.populate(self.get_result(query), tree)

    def populate(
        self,
        entities: typing.Iterable[EntityInstance],
        populate: Populate,
        refresh: bool = False,
        entity: typing.Optional[str] = None,
    ) -> typing.List[EntityInstance]:
        """Load the hinted relations for a batch of entities of one type.

        ``entity`` names the batch type up front so paths are checked against it even when the batch is empty;
        without it an empty batch only needs some registered entity to accept the paths.
        """
        entities = list(entities)
        names = {instance.meta.name for instance in entities}
        if entity is not None:
            names.add(entity)
        if len(names) > 1:
            raise ConfigurationError(f"Can only populate entities of one type at a time, got {sorted(names)}")
        if not names:
            self._check_paths(populate)
            return entities
        tree = self._tree(names.pop(), populate)
        if entities:
            PopulatingVisitor(self, entities, refresh).traverse_from(tree.root)
        return entities

    def serialize(self, entity: EntityInstance, populate: Populate = None) -> typing.Dict:
        tree = None if populate is None else self._tree(entity.meta.name, populate)
        return self._serializer.serialize(entity, tree)

    def serialize_many(
        self, entities: typing.Iterable[EntityInstance], populate: Populate = None
    ) -> typing.List[typing.Dict]:
        return [self.serialize(entity, populate) for entity in entities]

    def create(self, entity: str, **values: typing.Any) -> EntityInstance:
        instance = EntityInstance(self.registry.describe(entity))
        for name, value in values.items():
            instance.set(name, value)
        if instance.identity is not None:
            self.identity_map.add(instance)
        return instance

    def map(self, entity: str, data: typing.Mapping[str, typing.Any]) -> EntityInstance:
        result = self._hydrator.map(self.registry.describe(entity), data)
        if not result.roots:
            raise ConfigurationError(f"Can not map {entity} without a primary key")
        return result.roots[0]

    def clear(self) -> None:
        self.identity_map.clear()
        self.conflicts = []

    def _tree(self, entity: str, populate: Populate) -> populate_tree.PopulateTree:
        if isinstance(populate, populate_tree.PopulateTree):
            return populate
        if isinstance(populate, str):
            populate = [populate]
        return populate_tree.build(self.registry, entity, populate or ())

    def _check_paths(self, populate: Populate) -> None:
        if isinstance(populate, populate_tree.PopulateTree):
            return
        paths = [populate] if isinstance(populate, str) else list(populate or ())
        if not paths:
            return
        self.registry.finalize()
        for name in self.registry.entities:
            try:
                self._tree(name, paths)
            except ConfigurationError:
                continue
            return
        raise ConfigurationError(f"No entity type can populate {paths}")
