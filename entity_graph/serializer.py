import enum
import typing

from entity_graph.entity import EntityInstance, IdentityKey
from entity_graph.metadata import Relation
from entity_graph.populate_tree import Node, PopulateTree
from entity_graph.proxies import Collection, Reference


class UnloadedCollections(enum.Enum):
    OMIT = "omit"
    EMPTY = "empty"


_OMIT = object()


class Serializer:
    """Turns an entity graph into plain nested dicts and lists.

    With a populate tree only the relations named by it are expanded; without one every loaded relation is.
    Descending never follows the inverse of the edge it came through and never re-enters an entity that is
    still being serialized: such relations come out as raw primary keys.
    """

    def __init__(self, unloaded_collections: UnloadedCollections = UnloadedCollections.OMIT) -> None:
        self._unloaded_collections = unloaded_collections

    def serialize(self, entity: EntityInstance, tree: typing.Optional[PopulateTree] = None) -> typing.Dict:
        node = tree.root if tree is not None else None
        return self._serialize(entity, node, tree is not None, None, set())

    def _serialize(
        self,
        entity: EntityInstance,
        node: typing.Optional[Node],
        hinted: bool,
        back_edge: typing.Optional[str],
        in_progress: typing.Set[IdentityKey],
    ) -> typing.Dict:
        result = dict(entity.scalars())
        in_progress = in_progress | {entity.key}

        for relation in entity.meta.relations:
            child = node.child(relation.name) if node is not None else None
            expand = relation.name != back_edge and (child is not None or not hinted)
            slot = entity.slot(relation.name)
            if isinstance(slot, Collection):
                value = self._collection(slot, relation, child, hinted, expand, in_progress)
            else:
                value = self._reference(slot, relation, child, hinted, expand, in_progress)
            if value is not _OMIT:
                result[relation.name] = value
        return result

    def _reference(
        self,
        slot: Reference,
        relation: Relation,
        child: typing.Optional[Node],
        hinted: bool,
        expand: bool,
        in_progress: typing.Set[IdentityKey],
    ) -> typing.Any:
        if slot.is_initialized():
            target = slot.get()
            if target is None:
                return None
            if expand and target.key not in in_progress:
                return self._serialize(target, child, hinted, relation.inverse, in_progress)
            return target.identity
        if slot.identity is None and not relation.owner:
            return _OMIT
        return slot.identity

    def _collection(
        self,
        slot: Collection,
        relation: Relation,
        child: typing.Optional[Node],
        hinted: bool,
        expand: bool,
        in_progress: typing.Set[IdentityKey],
    ) -> typing.Any:
        if not slot.is_initialized() or (hinted and child is None):
            if self._unloaded_collections is UnloadedCollections.EMPTY:
                return []
            return _OMIT
        if not expand:
            return [member.identity for member in slot]
        return [
            member.identity
            if member.key in in_progress
            else self._serialize(member, child, hinted, relation.inverse, in_progress)
            for member in slot
        ]
