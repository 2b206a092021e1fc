import unittest
from types import SimpleNamespace
from unittest.mock import Mock, patch

from botocore.exceptions import ClientError

from socialgraph.core.errors import PreconditionViolation
from socialgraph.core.inbox_store import DynamoNotificationStore
from socialgraph.core.results import NotifyResult
from socialgraph.services import delivery, notifications

from helpers import seed_actor, use_memory_tables

T0 = 1_700_000_000


class NotificationTestCase(unittest.TestCase):
    def setUp(self):
        self.tables = use_memory_tables(self)
        seed_actor(self.tables, "bob")

    def at(self, ts):
        return patch.object(notifications, "now_ts", return_value=ts)

    def send(self, ts, sender="alice", notif_type="like", content="post-1"):
        with self.at(ts):
            return notifications.notify("bob", sender, notif_type, content, "alice liked your post")


class TestNotify(NotificationTestCase):
    def test_creates_record(self):
        self.assertEqual(self.send(T0), NotifyResult.CREATED)
        [rec] = self.tables.notifications.all_for("bob")
        self.assertEqual(rec["sender_id"], "alice")
        self.assertEqual(rec["created_at"], T0)
        self.assertFalse(rec["read"])
        self.assertTrue(rec["notification_id"].startswith(f"{T0:010d}#"))

    def test_self_notification_suppressed(self):
        with self.at(T0):
            result = notifications.notify("bob", "bob", "like", "post-1", "hi")
        self.assertEqual(result, NotifyResult.SUPPRESSED_SELF)
        self.assertEqual(self.tables.notifications.all_for("bob"), [])

    def test_duplicate_inside_window_suppressed(self):
        self.send(T0)
        self.assertEqual(self.send(T0 + 60), NotifyResult.SUPPRESSED_DUPLICATE)
        self.assertEqual(self.send(T0 + 300), NotifyResult.SUPPRESSED_DUPLICATE)
        self.assertEqual(len(self.tables.notifications.all_for("bob")), 1)

    def test_duplicate_after_window_created(self):
        self.send(T0)
        self.assertEqual(self.send(T0 + 301), NotifyResult.CREATED)
        self.assertEqual(len(self.tables.notifications.all_for("bob")), 2)

    def test_different_content_is_not_a_duplicate(self):
        self.send(T0)
        self.assertEqual(self.send(T0 + 5, content="post-2"), NotifyResult.CREATED)
        self.assertEqual(self.send(T0 + 5, sender="carol"), NotifyResult.CREATED)

    def test_preference_off_suppresses(self):
        seed_actor(self.tables, "bob", settings={"notifications": {"likes": False}})
        self.assertEqual(self.send(T0), NotifyResult.SUPPRESSED_PREFERENCE)
        self.assertEqual(self.send(T0, notif_type="comment"), NotifyResult.CREATED)

    def test_invalid_input(self):
        with self.assertRaises(PreconditionViolation):
            notifications.notify("bob", "alice", "poke", None, "hi")
        with self.assertRaises(PreconditionViolation):
            notifications.notify("bob", "alice", "like", None, "   ")
        with self.assertRaises(PreconditionViolation):
            notifications.notify("bob", "alice", "like", None, "x" * 501)


class TestDelivery(NotificationTestCase):
    def test_sse_subscriber_receives_payload(self):
        q = delivery.sse_subscribe("bob")
        self.addCleanup(delivery.sse_unsubscribe, "bob", q)
        self.send(T0)
        item = q.get_nowait()
        self.assertEqual(item["recipient_id"], "bob")
        self.assertEqual(item["payload"]["type"], "like")

    def test_queue_failure_keeps_record(self):
        sqs = Mock()
        sqs.send_message.side_effect = ClientError({"Error": {"Code": "AccessDenied"}}, "SendMessage")
        with patch.object(delivery, "S", SimpleNamespace(delivery_queue_url="https://sqs/q")), patch.object(
            delivery, "sqs_client", return_value=sqs
        ):
            self.assertEqual(self.send(T0), NotifyResult.CREATED)
        sqs.send_message.assert_called_once()
        self.assertEqual(len(self.tables.notifications.all_for("bob")), 1)


class TestInbox(NotificationTestCase):
    def setUp(self):
        super().setUp()
        for i, sender in enumerate(("u1", "u2", "u3")):
            self.send(T0 + i, sender=sender)

    def test_list_newest_first_with_cursor(self):
        page = notifications.list_notifications("bob", limit=2)
        self.assertEqual([n["sender_id"] for n in page["notifications"]], ["u3", "u2"])
        self.assertIsNotNone(page["next_cursor"])

        rest = notifications.list_notifications("bob", limit=2, cursor=page["next_cursor"])
        self.assertEqual([n["sender_id"] for n in rest["notifications"]], ["u1"])
        self.assertIsNone(rest["next_cursor"])

    def test_bad_cursor(self):
        with self.assertRaises(PreconditionViolation):
            notifications.list_notifications("bob", cursor="_w")

    def test_mark_read_and_stats(self):
        first = notifications.list_notifications("bob")["notifications"][0]["notification_id"]
        self.assertEqual(notifications.mark_read("bob", [first]), 1)
        self.assertEqual(notifications.mark_read("bob", [first]), 0)
        self.assertEqual(notifications.notification_stats("bob"), {"total": 3, "unread": 2, "read": 1})

        unread = notifications.list_notifications("bob", unread_only=True)["notifications"]
        self.assertEqual(len(unread), 2)

        self.assertEqual(notifications.mark_read("bob"), 2)
        self.assertEqual(notifications.notification_stats("bob")["unread"], 0)

    def test_unread_only_skips_read_records_before_paging(self):
        page = notifications.list_notifications("bob", limit=2)
        notifications.mark_read("bob", [n["notification_id"] for n in page["notifications"]])

        unread = notifications.list_notifications("bob", limit=1, unread_only=True)
        self.assertEqual([n["sender_id"] for n in unread["notifications"]], ["u1"])
        self.assertIsNone(unread["next_cursor"])

    def test_delete(self):
        first = notifications.list_notifications("bob")["notifications"][0]["notification_id"]
        notifications.delete_notification("bob", first)
        self.assertEqual(notifications.notification_stats("bob")["total"], 2)


class TestDynamoInboxPaging(unittest.TestCase):
    def record(self, nid):
        return {"recipient_id": "bob", "notification_id": nid, "read": False}

    def test_unread_page_keeps_querying_past_filtered_pages(self):
        table = Mock()
        table.query.side_effect = [
            {"Items": [], "LastEvaluatedKey": {"recipient_id": "bob", "notification_id": "0000000009#a"}},
            {"Items": [self.record("0000000005#b")], "LastEvaluatedKey": {"recipient_id": "bob", "notification_id": "0000000005#b"}},
            {"Items": [self.record("0000000003#c")]},
        ]
        items, next_id = DynamoNotificationStore(table).page("bob", limit=2, unread_only=True)

        self.assertEqual([it["notification_id"] for it in items], ["0000000005#b", "0000000003#c"])
        self.assertIsNone(next_id)
        calls = table.query.call_args_list
        self.assertEqual(len(calls), 3)
        self.assertIn("FilterExpression", calls[0].kwargs)
        self.assertEqual([c.kwargs["Limit"] for c in calls], [2, 2, 1])
        self.assertEqual(calls[1].kwargs["ExclusiveStartKey"]["notification_id"], "0000000009#a")

    def test_full_page_returns_cursor(self):
        table = Mock()
        table.query.return_value = {
            "Items": [self.record("0000000005#b")],
            "LastEvaluatedKey": {"recipient_id": "bob", "notification_id": "0000000005#b"},
        }
        items, next_id = DynamoNotificationStore(table).page("bob", limit=1)
        self.assertEqual(len(items), 1)
        self.assertEqual(next_id, "0000000005#b")
        self.assertNotIn("FilterExpression", table.query.call_args.kwargs)
