import abc
import typing
from collections import deque

import attr
import inflection

from entity_graph.metadata import EntityMetadata, Relation
from entity_graph.registry import Registry


class Visitor:
    def traverse_from(self, node: "Node") -> None:
        node.accept(self)
        for child in node.children:
            self.traverse_from(child)
        node.farewell(self)

    def visit_entity(self, entity: "EntityNode") -> None:
        pass

    def leave_entity(self, entity: "EntityNode") -> None:
        pass

    def visit_reference(self, reference: "ReferenceNode") -> None:
        pass

    def leave_reference(self, reference: "ReferenceNode") -> None:
        pass

    def visit_collection(self, collection: "CollectionNode") -> None:
        pass

    def leave_collection(self, collection: "CollectionNode") -> None:
        pass


class NodeMeta(type):
    def __new__(mcs, name: str, bases: tuple, namespace: dict) -> typing.Type:
        cls = super().__new__(mcs, name, bases, namespace)
        return attr.s(auto_attribs=True)(cls)


class Node(metaclass=NodeMeta):
    name: str
    meta: EntityMetadata
    relation: typing.Optional[Relation] = None
    path: str = ""
    children: typing.List["Node"] = attr.Factory(list)

    @abc.abstractmethod
    def accept(self, visitor: Visitor) -> None:
        pass

    @abc.abstractmethod
    def farewell(self, visitor: Visitor) -> None:
        pass

    def child(self, name: str) -> typing.Optional["Node"]:
        for child in self.children:
            if child.name == name:
                return child
        return None


class EntityNode(Node):
    def accept(self, visitor: Visitor) -> None:
        visitor.visit_entity(self)

    def farewell(self, visitor: Visitor) -> None:
        visitor.leave_entity(self)


class ReferenceNode(Node):
    def accept(self, visitor: Visitor) -> None:
        visitor.visit_reference(self)

    def farewell(self, visitor: Visitor) -> None:
        visitor.leave_reference(self)


class CollectionNode(Node):
    def accept(self, visitor: Visitor) -> None:
        visitor.visit_collection(self)

    def farewell(self, visitor: Visitor) -> None:
        visitor.leave_collection(self)


@attr.s(auto_attribs=True)
class PopulateTree:
    root: EntityNode

    def __iter__(self) -> typing.Generator[Node, None, None]:
        def iterate_dfs() -> typing.Generator[Node, None, None]:
            nodes_left: typing.Deque[Node] = deque([self.root])

            while nodes_left:
                current = nodes_left.pop()
                yield current
                nodes_left.extend(current.children[::-1])

        return iterate_dfs()

    @property
    def paths(self) -> typing.List[str]:
        return [node.path for node in self if node is not self.root]

    def includes(self, path: str) -> bool:
        return path in self.paths


def build(registry: Registry, root: str, paths: typing.Iterable[str] = ()) -> PopulateTree:
    """Parse dotted populate paths into a tree; ``"shop.orders"`` implies ``"shop"``.

    Unknown segments raise ``ConfigurationError`` before anything is loaded.
    """
    root_meta = registry.describe(root)
    root_node = EntityNode(inflection.underscore(root), root_meta)

    for path in paths:
        current: Node = root_node
        for segment in path.split("."):
            node = current.child(segment)
            if node is None:
                relation = current.meta.relation(segment)
                target = registry.describe(relation.target)
                node_cls = CollectionNode if relation.is_to_many else ReferenceNode
                node_path = f"{current.path}.{segment}" if current.path else segment
                node = node_cls(segment, target, relation, node_path)
                current.children.append(node)
            current = node

    return PopulateTree(root_node)
