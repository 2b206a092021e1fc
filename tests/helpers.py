from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from unittest.mock import patch

from socialgraph.core.errors import StoreUnavailable
from socialgraph.core.inbox_store import MemoryNotificationStore
from socialgraph.core.store import MemoryDocumentStore, actor_key, content_key
from socialgraph.core.tables import Tables
from socialgraph.services import checker, notifications, retry


def use_memory_tables(testcase, documents: Optional[Any] = None) -> Tables:
    tables = Tables(documents=documents or MemoryDocumentStore(), notifications=MemoryNotificationStore())
    for mod in (retry, notifications, checker):
        p = patch.object(mod, "T", tables)
        p.start()
        testcase.addCleanup(p.stop)
    return tables


def seed_actor(tables: Tables, actor_id: str, **fields: Any) -> None:
    doc: Dict[str, Any] = {"username": actor_id, **fields}
    tables.documents.put(actor_key(actor_id), doc)


def seed_content(tables: Tables, content_id: str, owner_id: str = "owner", kind: str = "reel", **fields: Any) -> None:
    doc: Dict[str, Any] = {"owner_id": owner_id, "kind": kind, **fields}
    tables.documents.put(content_key(content_id), doc)


def doc_of(tables: Tables, key: str) -> Dict[str, Any]:
    return tables.documents.get(key).doc


class FlakyStore(MemoryDocumentStore):
    """Memory store that can lose CAS races or refuse chosen writes.

    fail_writes maps a key to the 1-based write attempts that raise StoreUnavailable;
    lost_acks does the same after the write has been committed.
    """

    def __init__(self) -> None:
        super().__init__()
        self.fail_writes: Dict[str, Set[int]] = {}
        self.lost_acks: Dict[str, Set[int]] = {}
        self.lose_races: Dict[str, int] = {}
        self.writes: Dict[str, int] = {}

    def compare_and_swap(self, key, expected_version, doc):
        if self.lose_races.get(key):
            self.lose_races[key] -= 1
            return False, expected_version
        self.writes[key] = self.writes.get(key, 0) + 1
        n = self.writes[key]
        if n in self.fail_writes.get(key, ()):
            raise StoreUnavailable(f"write to {key} refused")
        out = super().compare_and_swap(key, expected_version, doc)
        if n in self.lost_acks.get(key, ()):
            raise StoreUnavailable(f"write to {key} timed out")
        return out


def run_concurrently(calls: List[Tuple[Any, ...]]) -> List[Any]:
    """Start every ``(fn, *args)`` call on its own thread at once; results in call order."""
    barrier = threading.Barrier(len(calls))
    results: List[Any] = [None] * len(calls)
    errors: List[BaseException] = []

    def run(i: int, fn: Callable[..., Any], args: Tuple[Any, ...]) -> None:
        barrier.wait()
        try:
            results[i] = fn(*args)
        except BaseException as exc:
            errors.append(exc)

    threads = [threading.Thread(target=run, args=(i, call[0], call[1:])) for i, call in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    if errors:
        raise errors[0]
    return results
