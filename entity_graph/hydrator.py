import logging
import typing

import attr

from entity_graph.entity import EntityInstance, IdentityKey
from entity_graph.exceptions import IdentityConflict
from entity_graph.identity_map import IdentityMap
from entity_graph.metadata import EntityMetadata, Relation
from entity_graph.proxies import Collection, Reference
from entity_graph.query import BuiltQuery
from entity_graph.registry import Registry
from entity_graph.storages.sqlalchemy.types import from_storage


logger = logging.getLogger(__name__)

Row = typing.Mapping[str, typing.Any]


@attr.s(auto_attribs=True)
class HydrationResult:
    roots: typing.List[EntityInstance] = attr.Factory(list)
    conflicts: typing.List[IdentityConflict] = attr.Factory(list)


@attr.s(auto_attribs=True)
class _Pass:
    seen: typing.Dict[IdentityKey, typing.Dict[str, typing.Any]] = attr.Factory(dict)
    touched: typing.Set[typing.Tuple[IdentityKey, str]] = attr.Factory(set)
    result: HydrationResult = attr.Factory(HydrationResult)


class Hydrator:
    """Rebuilds the distinct entity graph out of join-multiplied flat rows."""

    def __init__(self, registry: Registry, identity_map: IdentityMap) -> None:
        self._registry = registry
        self._identity_map = identity_map

    def hydrate(self, rows: typing.Iterable[Row], query: BuiltQuery) -> HydrationResult:
        metas = {alias: self._registry.describe(name) for alias, name in query.aliases.items()}
        labels_by_alias: typing.Dict[str, typing.List[typing.Tuple[str, str]]] = {alias: [] for alias in metas}
        for label, (alias, attribute) in query.columns.items():
            labels_by_alias[alias].append((label, attribute))
        relations = [(join, metas[join.source_alias].relation(join.relation)) for join in query.joins]

        current = _Pass()
        root_keys: typing.Set[IdentityKey] = set()

        for row in rows:
            row_entities: typing.Dict[str, EntityInstance] = {}
            for alias, labels in labels_by_alias.items():
                values = {attribute: row.get(label) for label, attribute in labels}
                entity = self._merge(metas[alias], values, current)
                if entity is None:
                    continue  # unmatched LEFT JOIN
                row_entities[alias] = entity

            root = row_entities.get(query.root_alias)
            if root is not None and root.key not in root_keys:
                root_keys.add(root.key)
                current.result.roots.append(root)

            for join, relation in relations:
                source = row_entities.get(join.source_alias)
                if source is not None:
                    self._link(source, relation, row_entities.get(join.target_alias), current)

        logger.debug(
            "hydrated %d %s roots out of %d entities",
            len(current.result.roots),
            query.aliases[query.root_alias],
            len(current.seen),
        )
        return current.result

    def map(self, meta: EntityMetadata, data: typing.Mapping[str, typing.Any]) -> HydrationResult:
        """Merge one plain attribute mapping into a managed entity."""
        current = _Pass()
        entity = self._merge(meta, data, current)
        if entity is not None:
            current.result.roots.append(entity)
        return current.result

    def _merge(
        self, meta: EntityMetadata, values: typing.Mapping[str, typing.Any], current: _Pass
    ) -> typing.Optional[EntityInstance]:
        primary_key = meta.primary_key
        identity = from_storage(values.get(primary_key.name), primary_key.type)
        if identity is None:
            return None

        coerced = {}
        for field in meta.fields:
            if field.name in values:
                coerced[field.name] = from_storage(values[field.name], field.type)
        for relation in meta.owning_relations:
            if relation.name in values:
                target_pk = self._registry.describe(relation.target).primary_key
                coerced[relation.name] = from_storage(values[relation.name], target_pk.type)

        entity, _created = self._identity_map.get_or_create(meta, identity)
        first = current.seen.get(entity.key)
        if first is None:
            current.seen[entity.key] = coerced
            self._assign(entity, coerced)
            return entity

        for attribute, value in coerced.items():
            if attribute in first and first[attribute] != value:
                conflict = IdentityConflict(entity.key, attribute, first[attribute], value)
                logger.warning("identity conflict, keeping first seen value: %s", conflict)
                current.result.conflicts.append(conflict)
        return entity

    def _assign(self, entity: EntityInstance, values: typing.Mapping[str, typing.Any]) -> None:
        for attribute, value in values.items():
            slot = entity.get(attribute)
            if not isinstance(slot, Reference):
                entity.set(attribute, value)
            elif value is None:
                slot.resolve(None)
            elif not (slot.is_initialized() and slot.identity == value):
                slot.unresolve(value)

    def _link(
        self, source: EntityInstance, relation: Relation, target: typing.Optional[EntityInstance], current: _Pass
    ) -> None:
        slot = source.slot(relation.name)
        touched_key = (source.key, relation.name)

        if isinstance(slot, Collection):
            if touched_key not in current.touched:
                current.touched.add(touched_key)
                slot.reset()
            if target is not None:
                slot.add(target)
                if relation.inverse:
                    target.slot(relation.inverse).resolve(source)
            return

        if target is not None:
            slot.resolve(target)
            if relation.inverse:
                inverse = target.slot(relation.inverse)
                if isinstance(inverse, Reference):
                    inverse.resolve(source)
        elif not relation.owner or slot.identity is None:
            # nothing on the other side of the join
            slot.resolve(None)
