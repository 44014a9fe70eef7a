"""
marketplace_sync/storage/graph_store.py - NetworkX-backed record store.

Every record is a node of a ``nx.DiGraph``; every parent → child relation is
an edge. Node attributes:

    node_type   record kind (see storage.schema)
    name        record name, unique among siblings
    properties  dict of scalar properties

Children keep creation order because NetworkX adjacency dicts preserve
insertion order. A re-entrant lock serialises all operations, so one store can
be shared by the per-vendor worker threads of the batch importer.

Persistence is a plain JSON document (root id, nodes in creation order, edges)
written atomically: write ``.tmp``, then ``os.replace``.
"""
import json
import logging
import os
import threading
import uuid
from datetime import datetime
from typing import Any, Optional

import networkx as nx

from marketplace_sync.errors import StoreWriteFailure
from marketplace_sync.storage import schema
from marketplace_sync.storage.base import Record, RecordStore

logger = logging.getLogger(__name__)

_FORMAT_VERSION = 1
_DATETIME_KEY = "$datetime"


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return {_DATETIME_KEY: value.isoformat()}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serialisable")


def _decode(obj: dict) -> Any:
    if len(obj) == 1 and _DATETIME_KEY in obj:
        return datetime.fromisoformat(obj[_DATETIME_KEY])
    return obj


class GraphRecordStore(RecordStore):
    """In-memory record tree on a NetworkX DiGraph.

    Args:
        title: Title stored on the root ``Storage`` record of a new tree.

    Attributes:
        write_count: Number of mutating operations applied since construction
            (creations, property writes, kind changes, removals).
    """

    def __init__(self, title: str = "Marketplace") -> None:
        self._graph = nx.DiGraph()
        self._lock = threading.RLock()
        self._children: dict[str, dict[str, str]] = {}
        self.write_count = 0
        self._root_id = self._add_node(None, "storage", schema.STORAGE)
        self._graph.nodes[self._root_id]["properties"]["title"] = title

    # ── Internals ────────────────────────────────────────────────────────────

    def _add_node(self, parent_id: Optional[str], name: str, kind: str) -> str:
        kind_schema = schema.check_creatable(kind)
        node_id = uuid.uuid4().hex
        self._graph.add_node(node_id, node_type=kind, name=name, properties={})
        self._children[node_id] = {}
        if parent_id is not None:
            self._graph.add_edge(parent_id, node_id)
            self._children[parent_id][name] = node_id
        for child_name, child_kind in kind_schema.auto_children.items():
            self._add_node(node_id, child_name, child_kind)
        return node_id

    def _node(self, record: Record) -> dict:
        try:
            return self._graph.nodes[record.id]
        except KeyError:
            raise StoreWriteFailure(f"Record {record.name!r} ({record.id}) is not in the store") from None

    def _record(self, node_id: str) -> Record:
        return Record(id=node_id, name=self._graph.nodes[node_id]["name"])

    # ── RecordStore ──────────────────────────────────────────────────────────

    @property
    def graph(self) -> nx.DiGraph:
        """The underlying graph. Treat as read-only."""
        return self._graph

    def root(self) -> Record:
        return self._record(self._root_id)

    def find_child(self, parent: Record, name: str) -> Optional[Record]:
        with self._lock:
            child_id = self._children.get(parent.id, {}).get(name)
            return self._record(child_id) if child_id is not None else None

    def create_child(self, parent: Record, name: str, kind: str) -> Record:
        with self._lock:
            self._node(parent)
            if name in self._children[parent.id]:
                raise StoreWriteFailure(f"A record named {name!r} already exists under {parent.name!r}")
            node_id = self._add_node(parent.id, name, kind)
            self.write_count += 1
            logger.debug("Created %s %r under %r", kind, name, parent.name)
            return self._record(node_id)

    def get_property(self, record: Record, key: str) -> Any:
        with self._lock:
            return self._node(record)["properties"].get(key)

    def get_properties(self, record: Record) -> dict[str, Any]:
        with self._lock:
            return dict(self._node(record)["properties"])

    def set_property(self, record: Record, key: str, value: Any) -> None:
        with self._lock:
            node = self._node(record)
            schema.check_property(node["node_type"], key)
            node["properties"][key] = value
            self.write_count += 1

    def list_children(self, parent: Record, kind: Optional[str] = None) -> list[Record]:
        with self._lock:
            self._node(parent)
            return [
                self._record(child_id)
                for child_id in self._graph.successors(parent.id)
                if kind is None or schema.is_instance_of(self._graph.nodes[child_id]["node_type"], kind)
            ]

    def find_descendants(self, parent: Record, kind: str) -> list[Record]:
        with self._lock:
            self._node(parent)
            return [
                self._record(node_id)
                for node_id in nx.dfs_preorder_nodes(self._graph, parent.id)
                if node_id != parent.id and schema.is_instance_of(self._graph.nodes[node_id]["node_type"], kind)
            ]

    def remove(self, record: Record) -> None:
        with self._lock:
            self._node(record)
            if record.id == self._root_id:
                raise StoreWriteFailure("The storage root cannot be removed")
            for parent_id in list(self._graph.predecessors(record.id)):
                self._children[parent_id].pop(record.name, None)
            subtree = nx.descendants(self._graph, record.id) | {record.id}
            self._graph.remove_nodes_from(subtree)
            for node_id in subtree:
                self._children.pop(node_id, None)
            self.write_count += 1
            logger.debug("Removed %r and %d descendant(s)", record.name, len(subtree) - 1)

    def get_kind(self, record: Record) -> str:
        with self._lock:
            return self._node(record)["node_type"]

    def change_kind(self, record: Record, kind: str) -> None:
        with self._lock:
            node = self._node(record)
            kind_schema = schema.check_creatable(kind)
            for key in node["properties"]:
                schema.check_property(kind, key)
            node["node_type"] = kind
            for child_name, child_kind in kind_schema.auto_children.items():
                if child_name not in self._children[record.id]:
                    self._add_node(record.id, child_name, child_kind)
            self.write_count += 1

    def has_record(self, record: Record) -> bool:
        with self._lock:
            return record.id in self._graph

    # ── Persistence ──────────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        """JSON-ready snapshot of the tree."""
        with self._lock:
            return {
                "format": _FORMAT_VERSION,
                "root": self._root_id,
                "nodes": [
                    {
                        "id": node_id,
                        "node_type": data["node_type"],
                        "name": data["name"],
                        "properties": data["properties"],
                    }
                    for node_id, data in self._graph.nodes(data=True)
                ],
                "edges": [[parent_id, child_id] for parent_id, child_id in self._graph.edges()],
            }

    @classmethod
    def from_dict(cls, data: dict) -> "GraphRecordStore":
        """Rebuild a store from a ``to_dict`` snapshot."""
        store = cls.__new__(cls)
        store._graph = nx.DiGraph()
        store._lock = threading.RLock()
        store._children = {}
        store.write_count = 0
        store._root_id = data["root"]
        for node in data["nodes"]:
            schema.schema_for(node["node_type"])
            store._graph.add_node(
                node["id"],
                node_type=node["node_type"],
                name=node["name"],
                properties=dict(node.get("properties") or {}),
            )
            store._children[node["id"]] = {}
        for parent_id, child_id in data["edges"]:
            store._graph.add_edge(parent_id, child_id)
            store._children[parent_id][store._graph.nodes[child_id]["name"]] = child_id
        return store

    def save(self, path: str) -> None:
        """Write the tree to *path* atomically (write .tmp, rename)."""
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp = path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(self.to_dict(), fh, default=_encode, indent=1)
        os.replace(tmp, path)
        logger.info("Saved %d records to %s", self._graph.number_of_nodes(), path)

    @classmethod
    def load(cls, path: str) -> "GraphRecordStore":
        """Load a tree saved by ``save``. A missing file yields an empty store."""
        if not os.path.exists(path):
            logger.info("No store at %s, starting with an empty tree", path)
            return cls()
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh, object_hook=_decode)
        store = cls.from_dict(data)
        logger.info("Loaded %d records from %s", store._graph.number_of_nodes(), path)
        return store
