from __future__ import annotations

import copy
import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterator, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from socialgraph.core.errors import StoreUnavailable
from socialgraph.core.time import now_ts


def actor_key(actor_id: str) -> str:
    return f"ACTOR#{actor_id}"


def content_key(content_id: str) -> str:
    return f"CONTENT#{content_id}"


@dataclass(frozen=True)
class Versioned:
    doc: Optional[Dict[str, Any]]
    version: int = 0

    @property
    def exists(self) -> bool:
        return self.doc is not None


def from_ddb(value: Any) -> Any:
    """DynamoDB hands numbers back as Decimal; documents use plain ints/floats."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_ddb(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [from_ddb(v) for v in value]
    if isinstance(value, set):
        return sorted(from_ddb(v) for v in value)
    return value


def _ddb_error(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Message") or exc.response.get("Error", {}).get("Code", "unknown")
    return str(exc)


class DynamoDocumentStore:
    """Versioned documents in a DynamoDB table keyed by ``pk``.

    Item layout: ``{"pk": key, "version": n, "doc": {...}, "updated_at": ts}``.
    Only single-item conditional writes are used; nothing here spans two items.
    """

    def __init__(self, table: Any):
        self.table = table

    def get(self, key: str) -> Versioned:
        try:
            resp = self.table.get_item(Key={"pk": key}, ConsistentRead=True)
        except (ClientError, BotoCoreError) as exc:
            raise StoreUnavailable(f"DDB error: {_ddb_error(exc)}") from exc
        item = resp.get("Item")
        if not item:
            return Versioned(None, 0)
        return Versioned(from_ddb(item.get("doc") or {}), int(item.get("version", 0)))

    def compare_and_swap(self, key: str, expected_version: int, doc: Dict[str, Any]) -> Tuple[bool, int]:
        new_version = int(expected_version) + 1
        kwargs: Dict[str, Any] = {
            "Item": {"pk": key, "version": new_version, "doc": doc, "updated_at": now_ts()},
        }
        if expected_version == 0:
            kwargs["ConditionExpression"] = "attribute_not_exists(pk)"
        else:
            kwargs["ConditionExpression"] = "version = :v"
            kwargs["ExpressionAttributeValues"] = {":v": int(expected_version)}
        try:
            self.table.put_item(**kwargs)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                return False, int(expected_version)
            raise StoreUnavailable(f"DDB error: {_ddb_error(exc)}") from exc
        except BotoCoreError as exc:
            raise StoreUnavailable(f"DDB error: {_ddb_error(exc)}") from exc
        return True, new_version

    def put(self, key: str, doc: Dict[str, Any]) -> int:
        try:
            resp = self.table.update_item(
                Key={"pk": key},
                UpdateExpression="SET doc = :d, updated_at = :u ADD version :one",
                ExpressionAttributeValues={":d": doc, ":u": now_ts(), ":one": 1},
                ReturnValues="UPDATED_NEW",
            )
        except (ClientError, BotoCoreError) as exc:
            raise StoreUnavailable(f"DDB error: {_ddb_error(exc)}") from exc
        return int(resp.get("Attributes", {}).get("version", 0))

    def scan(self, prefix: str) -> Iterator[Tuple[str, Versioned]]:
        kwargs: Dict[str, Any] = {
            "FilterExpression": "begins_with(pk, :p)",
            "ExpressionAttributeValues": {":p": prefix},
        }
        while True:
            try:
                resp = self.table.scan(**kwargs)
            except (ClientError, BotoCoreError) as exc:
                raise StoreUnavailable(f"DDB error: {_ddb_error(exc)}") from exc
            for item in resp.get("Items", []):
                yield item["pk"], Versioned(from_ddb(item.get("doc") or {}), int(item.get("version", 0)))
            lek = resp.get("LastEvaluatedKey")
            if not lek:
                return
            kwargs["ExclusiveStartKey"] = lek


class MemoryDocumentStore:
    """Process-local store with the same CAS contract (single-process dev and tests)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: Dict[str, Tuple[int, Dict[str, Any]]] = {}

    def get(self, key: str) -> Versioned:
        with self._lock:
            it = self._items.get(key)
            if it is None:
                return Versioned(None, 0)
            return Versioned(copy.deepcopy(it[1]), it[0])

    def compare_and_swap(self, key: str, expected_version: int, doc: Dict[str, Any]) -> Tuple[bool, int]:
        with self._lock:
            current = self._items.get(key, (0, None))[0]
            if current != expected_version:
                return False, current
            self._items[key] = (current + 1, copy.deepcopy(doc))
            return True, current + 1

    def put(self, key: str, doc: Dict[str, Any]) -> int:
        with self._lock:
            version = self._items.get(key, (0, None))[0] + 1
            self._items[key] = (version, copy.deepcopy(doc))
            return version

    def scan(self, prefix: str) -> Iterator[Tuple[str, Versioned]]:
        with self._lock:
            snapshot = [(k, v, copy.deepcopy(d)) for k, (v, d) in self._items.items() if k.startswith(prefix)]
        for key, version, doc in snapshot:
            yield key, Versioned(doc, version)
