"""
marketplace_sync.storage — Record store layer.

Modules:
    schema       — Record kinds, their properties and auto-created children.
    base         — RecordStore interface and the Record handle.
    graph_store  — NetworkX DiGraph reference implementation with JSON persistence.
"""
from marketplace_sync.storage.base import Record, RecordStore
from marketplace_sync.storage.graph_store import GraphRecordStore

__all__ = ["GraphRecordStore", "Record", "RecordStore"]
