from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .inbox_store import DynamoNotificationStore, MemoryNotificationStore
from .settings import S
from .store import DynamoDocumentStore, MemoryDocumentStore

@dataclass(frozen=True)
class Tables:
    documents: Any
    notifications: Any

def build_tables() -> Tables:
    if S.store_backend == "memory":
        return Tables(documents=MemoryDocumentStore(), notifications=MemoryNotificationStore())
    from .aws import ddb
    return Tables(
        documents=DynamoDocumentStore(ddb.Table(S.documents_table_name)),
        notifications=DynamoNotificationStore(ddb.Table(S.notifications_table_name)),
    )

T = build_tables()
