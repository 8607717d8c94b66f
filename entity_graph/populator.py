import logging
import typing

from entity_graph.entity import EntityInstance
from entity_graph.populate_tree import CollectionNode, EntityNode, ReferenceNode, Visitor
from entity_graph.proxies import Collection, Reference

if typing.TYPE_CHECKING:
    from entity_graph.session import Session


logger = logging.getLogger(__name__)


def _distinct(entities: typing.Iterable[typing.Optional[EntityInstance]]) -> typing.List[EntityInstance]:
    seen = set()
    result = []
    for entity in entities:
        if entity is None or entity.key in seen:
            continue
        seen.add(entity.key)
        result.append(entity)
    return result


class PopulatingVisitor(Visitor):
    """Walks a populate tree, loading each relation node for the whole batch of owners at once.

    A relation already initialized on every owner (e.g. by an eager join) is not queried again unless
    ``refresh`` is set; otherwise one follow-up query filtered by the owners' keys is issued per node.
    """

    def __init__(self, session: "Session", entities: typing.Iterable[EntityInstance], refresh: bool = False) -> None:
        self._session = session
        self._refresh = refresh
        self._batches: typing.List[typing.List[EntityInstance]] = [_distinct(entities)]

    @property
    def current_batch(self) -> typing.List[EntityInstance]:
        return self._batches[-1]

    def visit_entity(self, entity: EntityNode) -> None:
        pass

    def visit_reference(self, reference: ReferenceNode) -> None:
        owners = self.current_batch
        pending = [owner for owner in owners if self._refresh or not owner.slot(reference.name).is_initialized()]
        if pending:
            if reference.relation.owner:
                self._load_owned_references(pending, reference)
            else:
                self._load_inverse_references(pending, reference)

        slots = [owner.slot(reference.name) for owner in owners]
        self._batches.append(_distinct(slot.get() for slot in slots if slot.is_initialized()))

    def leave_reference(self, reference: ReferenceNode) -> None:
        self._batches.pop()

    def visit_collection(self, collection: CollectionNode) -> None:
        owners = self.current_batch
        pending = [owner for owner in owners if self._refresh or not owner.slot(collection.name).is_initialized()]
        if pending:
            self._load_collections(pending, collection)

        members: typing.List[EntityInstance] = []
        for owner in owners:
            members.extend(owner.slot(collection.name).items())
        self._batches.append(_distinct(members))

    def leave_collection(self, collection: CollectionNode) -> None:
        self._batches.pop()

    def _fetch(self, node: typing.Union[ReferenceNode, CollectionNode], column: str, keys: typing.List[typing.Any]):
        query = (
            self._session.query(node.meta.name)
            .where({column: keys})
            .order_by(node.meta.primary_key.name)
        )
        logger.debug("populating %s for %d owners", node.path, len(keys))
        return self._session.get_result(query)

    def _load_owned_references(self, owners: typing.List[EntityInstance], node: ReferenceNode) -> None:
        slots: typing.List[Reference] = [owner.slot(node.name) for owner in owners]
        keys = list(dict.fromkeys(slot.identity for slot in slots if slot.identity is not None))
        if keys:
            self._fetch(node, node.meta.primary_key.name, keys)

        identity_map = self._session.identity_map
        for owner, slot in zip(owners, slots):
            if slot.identity is None:
                slot.resolve(None)
                continue
            target = identity_map.get(node.meta.name, slot.identity)
            if target is None:
                continue  # dangling foreign key, stays unresolved
            slot.resolve(target)
            if node.relation.inverse:
                inverse = target.slot(node.relation.inverse)
                if isinstance(inverse, Reference):
                    inverse.resolve(owner)

    def _load_inverse_references(self, owners: typing.List[EntityInstance], node: ReferenceNode) -> None:
        inverse = node.relation.inverse
        targets = self._fetch(node, inverse, [owner.identity for owner in owners])
        by_owner = {target.slot(inverse).identity: target for target in targets}
        for owner in owners:
            target = by_owner.get(owner.identity)
            owner.slot(node.name).resolve(target)
            if target is not None:
                target.slot(inverse).resolve(owner)

    def _load_collections(self, owners: typing.List[EntityInstance], node: CollectionNode) -> None:
        inverse = node.relation.inverse
        members = self._fetch(node, inverse, [owner.identity for owner in owners])
        grouped: typing.Dict[typing.Any, typing.List[EntityInstance]] = {}
        for member in members:
            grouped.setdefault(member.slot(inverse).identity, []).append(member)

        for owner in owners:
            collection: Collection = owner.slot(node.name)
            collection.hydrate(grouped.get(owner.identity, []))
            for member in collection.items():
                member.slot(inverse).resolve(owner)
