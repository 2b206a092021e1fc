import unittest
from decimal import Decimal
from unittest.mock import Mock

from botocore.exceptions import ClientError, EndpointConnectionError

from socialgraph.core.errors import StoreUnavailable
from socialgraph.core.store import DynamoDocumentStore, MemoryDocumentStore, Versioned, from_ddb


def client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, "PutItem")


class TestMemoryDocumentStore(unittest.TestCase):
    def test_get_missing_returns_empty_version(self):
        got = MemoryDocumentStore().get("ACTOR#nobody")
        self.assertFalse(got.exists)
        self.assertEqual(got.version, 0)

    def test_create_only_when_absent(self):
        store = MemoryDocumentStore()
        self.assertEqual(store.compare_and_swap("k", 0, {"a": 1}), (True, 1))
        self.assertEqual(store.compare_and_swap("k", 0, {"a": 2}), (False, 1))
        self.assertEqual(store.get("k"), Versioned({"a": 1}, 1))

    def test_stale_version_is_rejected(self):
        store = MemoryDocumentStore()
        store.put("k", {"n": 1})
        ok, version = store.compare_and_swap("k", 1, {"n": 2})
        self.assertTrue(ok)
        self.assertEqual(version, 2)
        self.assertEqual(store.compare_and_swap("k", 1, {"n": 3}), (False, 2))
        self.assertEqual(store.get("k").doc, {"n": 2})

    def test_reads_are_copies(self):
        store = MemoryDocumentStore()
        store.put("k", {"ids": ["a"]})
        store.get("k").doc["ids"].append("b")
        self.assertEqual(store.get("k").doc, {"ids": ["a"]})

    def test_scan_filters_by_prefix(self):
        store = MemoryDocumentStore()
        store.put("ACTOR#a", {})
        store.put("CONTENT#c", {})
        self.assertEqual([k for k, _ in store.scan("ACTOR#")], ["ACTOR#a"])


class TestDynamoDocumentStore(unittest.TestCase):
    def test_get_uses_consistent_read_and_converts_decimals(self):
        table = Mock()
        table.get_item.return_value = {"Item": {"pk": "k", "version": Decimal(3), "doc": {"n": Decimal("2")}}}
        got = DynamoDocumentStore(table).get("k")
        table.get_item.assert_called_once_with(Key={"pk": "k"}, ConsistentRead=True)
        self.assertEqual(got, Versioned({"n": 2}, 3))

    def test_cas_conditions_on_version(self):
        table = Mock()
        ok, version = DynamoDocumentStore(table).compare_and_swap("k", 4, {"n": 1})
        self.assertEqual((ok, version), (True, 5))
        kwargs = table.put_item.call_args.kwargs
        self.assertEqual(kwargs["ConditionExpression"], "version = :v")
        self.assertEqual(kwargs["ExpressionAttributeValues"], {":v": 4})
        self.assertEqual(kwargs["Item"]["version"], 5)

    def test_cas_with_zero_version_requires_absent_item(self):
        table = Mock()
        DynamoDocumentStore(table).compare_and_swap("k", 0, {})
        self.assertEqual(table.put_item.call_args.kwargs["ConditionExpression"], "attribute_not_exists(pk)")

    def test_condition_failure_is_a_lost_race(self):
        table = Mock()
        table.put_item.side_effect = client_error("ConditionalCheckFailedException")
        self.assertEqual(DynamoDocumentStore(table).compare_and_swap("k", 2, {}), (False, 2))

    def test_other_errors_are_unavailable(self):
        table = Mock()
        table.put_item.side_effect = client_error("ProvisionedThroughputExceededException")
        with self.assertRaises(StoreUnavailable):
            DynamoDocumentStore(table).compare_and_swap("k", 2, {})

        table.get_item.side_effect = EndpointConnectionError(endpoint_url="http://ddb")
        with self.assertRaises(StoreUnavailable):
            DynamoDocumentStore(table).get("k")

    def test_scan_follows_pagination(self):
        table = Mock()
        table.scan.side_effect = [
            {"Items": [{"pk": "ACTOR#a", "version": 1, "doc": {}}], "LastEvaluatedKey": {"pk": "ACTOR#a"}},
            {"Items": [{"pk": "ACTOR#b", "version": 2, "doc": {}}]},
        ]
        keys = [k for k, _ in DynamoDocumentStore(table).scan("ACTOR#")]
        self.assertEqual(keys, ["ACTOR#a", "ACTOR#b"])
        self.assertEqual(table.scan.call_args_list[1].kwargs["ExclusiveStartKey"], {"pk": "ACTOR#a"})


class TestFromDdb(unittest.TestCase):
    def test_nested_values(self):
        self.assertEqual(
            from_ddb({"a": [Decimal("1"), Decimal("1.5")], "b": {"c": Decimal(0)}}),
            {"a": [1, 1.5], "b": {"c": 0}},
        )
