from entity_graph.entity import EntityInstance
from entity_graph.exceptions import ConfigurationError, DriverError, EntityGraphError, IdentityConflict, NotLoaded
from entity_graph.metadata import EntityMetadata, Field, Relation, RelationKind
from entity_graph.metadata import entity, field, many_to_one, one_to_many, one_to_one
from entity_graph.proxies import Collection, Reference
from entity_graph.query import QueryBuilder, QueryOrder, raw
from entity_graph.registry import Registry
from entity_graph.serializer import UnloadedCollections
from entity_graph.session import Session, SessionOptions
