from __future__ import annotations

import copy
import threading
from typing import Any, Dict, List, Optional, Tuple

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError

from socialgraph.core.errors import StoreUnavailable
from socialgraph.core.store import from_ddb


def notification_sort_key(ts: int, suffix: str = "") -> str:
    return f"{int(ts):010d}#{suffix}"


class DynamoNotificationStore:
    """Notification records keyed by (recipient_id, notification_id).

    notification_id starts with a zero-padded timestamp, so a range condition on the
    sort key selects the records created after a given time.
    """

    def __init__(self, table: Any):
        self.table = table

    def _query(self, **kwargs: Any) -> Dict[str, Any]:
        try:
            return self.table.query(**kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise StoreUnavailable(f"DDB error: {exc}") from exc

    def insert(self, record: Dict[str, Any]) -> None:
        try:
            self.table.put_item(
                Item=record,
                ConditionExpression="attribute_not_exists(notification_id)",
            )
        except (ClientError, BotoCoreError) as exc:
            raise StoreUnavailable(f"DDB error: {exc}") from exc

    def created_since(self, recipient_id: str, since_ts: int) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        kwargs: Dict[str, Any] = {
            "KeyConditionExpression": Key("recipient_id").eq(recipient_id)
            & Key("notification_id").gte(notification_sort_key(since_ts)),
        }
        while True:
            resp = self._query(**kwargs)
            out.extend(from_ddb(it) for it in resp.get("Items", []))
            lek = resp.get("LastEvaluatedKey")
            if not lek:
                return out
            kwargs["ExclusiveStartKey"] = lek

    def page(
        self,
        recipient_id: str,
        *,
        limit: int,
        start_after: Optional[str] = None,
        unread_only: bool = False,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Newest first. Limit applies before FilterExpression, so filtered pages keep querying."""
        kwargs: Dict[str, Any] = {
            "KeyConditionExpression": Key("recipient_id").eq(recipient_id),
            "ScanIndexForward": False,
        }
        if unread_only:
            kwargs["FilterExpression"] = Attr("read").eq(False)
        if start_after:
            kwargs["ExclusiveStartKey"] = {"recipient_id": recipient_id, "notification_id": start_after}
        out: List[Dict[str, Any]] = []
        while True:
            kwargs["Limit"] = limit - len(out)
            resp = self._query(**kwargs)
            out.extend(from_ddb(it) for it in resp.get("Items", []))
            lek = resp.get("LastEvaluatedKey")
            if not lek:
                return out, None
            if len(out) >= limit:
                return out, lek.get("notification_id")
            kwargs["ExclusiveStartKey"] = lek

    def all_for(self, recipient_id: str) -> List[Dict[str, Any]]:
        return self.created_since(recipient_id, 0)

    def mark_read(self, recipient_id: str, notification_id: str, ts: int) -> bool:
        try:
            self.table.update_item(
                Key={"recipient_id": recipient_id, "notification_id": notification_id},
                UpdateExpression="SET #r = :t, read_at = :ts",
                ConditionExpression="attribute_exists(notification_id) AND #r = :f",
                ExpressionAttributeNames={"#r": "read"},
                ExpressionAttributeValues={":t": True, ":f": False, ":ts": ts},
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                return False
            raise StoreUnavailable(f"DDB error: {exc}") from exc
        except BotoCoreError as exc:
            raise StoreUnavailable(f"DDB error: {exc}") from exc
        return True

    def delete(self, recipient_id: str, notification_id: str) -> None:
        try:
            self.table.delete_item(Key={"recipient_id": recipient_id, "notification_id": notification_id})
        except (ClientError, BotoCoreError) as exc:
            raise StoreUnavailable(f"DDB error: {exc}") from exc


class MemoryNotificationStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_recipient: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def insert(self, record: Dict[str, Any]) -> None:
        with self._lock:
            box = self._by_recipient.setdefault(record["recipient_id"], {})
            if record["notification_id"] in box:
                raise StoreUnavailable(f"duplicate notification id {record['notification_id']}")
            box[record["notification_id"]] = copy.deepcopy(record)

    def _sorted(self, recipient_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            box = self._by_recipient.get(recipient_id, {})
            return [copy.deepcopy(box[k]) for k in sorted(box)]

    def created_since(self, recipient_id: str, since_ts: int) -> List[Dict[str, Any]]:
        floor = notification_sort_key(since_ts)
        return [r for r in self._sorted(recipient_id) if r["notification_id"] >= floor]

    def page(
        self,
        recipient_id: str,
        *,
        limit: int,
        start_after: Optional[str] = None,
        unread_only: bool = False,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        newest_first = list(reversed(self._sorted(recipient_id)))
        if start_after:
            newest_first = [r for r in newest_first if r["notification_id"] < start_after]
        if unread_only:
            newest_first = [r for r in newest_first if not r.get("read")]
        items = newest_first[:limit]
        next_key = items[-1]["notification_id"] if len(newest_first) > limit else None
        return items, next_key

    def all_for(self, recipient_id: str) -> List[Dict[str, Any]]:
        return self._sorted(recipient_id)

    def mark_read(self, recipient_id: str, notification_id: str, ts: int) -> bool:
        with self._lock:
            rec = self._by_recipient.get(recipient_id, {}).get(notification_id)
            if rec is None or rec.get("read"):
                return False
            rec["read"] = True
            rec["read_at"] = ts
            return True

    def delete(self, recipient_id: str, notification_id: str) -> None:
        with self._lock:
            self._by_recipient.get(recipient_id, {}).pop(notification_id, None)
