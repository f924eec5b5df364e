import unittest
from unittest.mock import MagicMock
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError

from collection_readers.config.settings import MongoReaderConfig
from collection_readers.errors import (
    CursorExhaustedError,
    MappingError,
    QueryError,
    ReaderConnectionError,
)
from collection_readers.extract.mongo_reader import MongoCollectionReader, parse_query


class FakeCommandCursor:
    """Stands in for pymongo's CommandCursor: iterable once, closable."""

    def __init__(self, docs, fail_after=None):
        self._docs = list(docs)
        self._fail_after = fail_after
        self._served = 0
        self.closed = False

    def __iter__(self):
        return self

    def __next__(self):
        if self._fail_after is not None and self._served >= self._fail_after:
            raise OperationFailure("cursor killed", code=43)
        if self._served >= len(self._docs):
            raise StopIteration
        doc = self._docs[self._served]
        self._served += 1
        return doc

    def close(self):
        self.closed = True


def projected(n, **extra):
    """Documents as they come out of the $project stage, ids sorted ascending."""
    return [dict({"id": f"d{i}", "text": f"body {i}"}, **extra) for i in range(1, n + 1)]


class MongoReaderTestCase(unittest.TestCase):

    def setUp(self):
        self.client = MagicMock()
        self.collection = self.client.get_database.return_value.get_collection.return_value
        self.collection.full_name = "corpus.articles"
        self.collection.name = "articles"

    def make_reader(self, docs, **overrides):
        options = {"database": "corpus", "collection": "articles"}
        options.update(overrides)
        self.cursor = FakeCommandCursor(docs)
        self.collection.aggregate.return_value = self.cursor
        self.collection.count_documents.return_value = len(docs)
        return MongoCollectionReader(MongoReaderConfig(**options), client=self.client)


class TestPipeline(MongoReaderTestCase):

    def test_published_example_pipeline(self):
        """
        filter {status: "published"}, idField doc_id, textField body, max 2:
        match -> limit -> project -> sort by id.
        """
        reader = self.make_reader(
            projected(5),
            query='{"status": "published"}', id_field="doc_id", text_field="body", max_items=2
        )
        reader.open()

        pipeline = self.collection.aggregate.call_args.args[0]
        self.assertEqual(pipeline, [
            {"$match": {"status": "published"}},
            {"$limit": 2},
            {"$project": {"_id": 0, "id": "$doc_id", "text": "$body"}},
            {"$sort": {"id": 1}},
        ])

        kwargs = self.collection.aggregate.call_args.kwargs
        self.assertEqual(kwargs, {"batchSize": 100, "allowDiskUse": True})
        self.collection.count_documents.assert_called_once_with({"status": "published"})

    def test_no_limit_stage_without_max_items(self):
        reader = self.make_reader(projected(1))
        reader.open()

        pipeline = self.collection.aggregate.call_args.args[0]
        self.assertEqual([list(stage)[0] for stage in pipeline], ["$match", "$project", "$sort"])

    def test_language_field_projected_only_without_override(self):
        reader = self.make_reader(projected(1), language_field="meta.lang")
        reader.open()
        project = self.collection.aggregate.call_args.args[0][-2]["$project"]
        self.assertEqual(project["lang"], "$meta.lang")

        reader = self.make_reader(projected(1), language_field="meta.lang", language="en")
        reader.open()
        project = self.collection.aggregate.call_args.args[0][-2]["$project"]
        self.assertNotIn("lang", project)

    def test_parse_query(self):
        self.assertEqual(parse_query('{"status": "published"}'), {"status": "published"})
        self.assertEqual(parse_query(""), {})
        self.assertEqual(parse_query({"a": 1}), {"a": 1})
        # Extended JSON
        self.assertEqual(parse_query('{"n": {"$numberLong": "7"}}'), {"n": 7})

        with self.assertRaises(QueryError):
            parse_query("{status: published")
        with self.assertRaises(QueryError):
            parse_query("[1, 2]")


class TestIteration(MongoReaderTestCase):

    def test_max_items_example(self):
        """Five matching documents, max 2 -> exactly the first two by id, then exhausted."""
        reader = self.make_reader(projected(5), max_items=2)
        reader.open()

        ids = []
        while reader.has_next():
            ids.append(reader.get_next().id)

        self.assertEqual(ids, ["d1", "d2"])
        self.assertFalse(reader.has_next())
        self.assertEqual(reader.progress().as_tuple(), (2, 2))

    def test_has_next_does_not_consume(self):
        reader = self.make_reader(projected(2))
        reader.open()

        self.assertTrue(reader.has_next())
        self.assertTrue(reader.has_next())
        self.assertEqual(reader.progress().completed, 0)
        self.assertEqual(reader.get_next().id, "d1")

    def test_progress_increases_by_one_per_record(self):
        reader = self.make_reader(projected(3))
        reader.open()
        self.assertEqual(reader.progress().as_tuple(), (0, 3))

        seen = []
        while reader.has_next():
            reader.get_next()
            seen.append(reader.progress().completed)

        self.assertEqual(seen, [1, 2, 3])
        self.assertEqual(reader.progress().total, 3)

    def test_get_next_past_end(self):
        reader = self.make_reader(projected(1))
        reader.open()
        reader.get_next()

        with self.assertRaises(CursorExhaustedError):
            reader.get_next()

    def test_missing_text_and_missing_id(self):
        reader = self.make_reader([{"id": "d1"}, {"text": "no id"}, {"id": "d3"}])
        reader.open()

        self.assertEqual(reader.get_next().text, "")
        with self.assertRaises(MappingError):
            reader.get_next()
        self.assertEqual(reader.progress().completed, 1)

    def test_mapping_error_aborts_iteration(self):
        """A document without id stops the run; the following document is never handed out."""
        reader = self.make_reader([{"id": "d1"}, {"text": "no id"}, {"id": "d3"}])
        reader.open()
        reader.get_next()

        with self.assertRaises(MappingError):
            reader.get_next()
        with self.assertRaises(MappingError):
            reader.has_next()
        with self.assertRaises(MappingError):
            reader.get_next()
        self.assertEqual(reader.progress().completed, 1)

        reader.close()
        self.client.close.assert_called_once()

    def test_language_override_and_field(self):
        reader = self.make_reader(projected(2, lang="es"), language_field="lang")
        reader.open()
        self.assertEqual(reader.get_next().language, "es")

        reader = self.make_reader(projected(2, lang="es"), language_field="lang", language="en")
        reader.open()
        self.assertEqual([r.language for r in reader], ["en", "en"])

    def test_context_manager_and_iteration(self):
        reader = self.make_reader(projected(3))

        with reader as r:
            texts = [record.text for record in r]

        self.assertEqual(texts, ["body 1", "body 2", "body 3"])
        self.assertTrue(self.cursor.closed)
        self.client.close.assert_called_once()

    def test_cursor_failure_mid_iteration(self):
        reader = self.make_reader(projected(3))
        self.collection.aggregate.return_value = FakeCommandCursor(projected(3), fail_after=1)
        reader.open()

        reader.get_next()
        with self.assertRaises(QueryError):
            reader.has_next()
        # A dead cursor is not mistaken for the end of the data
        with self.assertRaises(QueryError):
            reader.has_next()
        with self.assertRaises(QueryError):
            reader.get_next()
        self.assertEqual(reader.progress().completed, 1)


class TestDegradation(MongoReaderTestCase):

    def test_count_failure_gives_indeterminate_total(self):
        reader = self.make_reader(projected(2))
        self.collection.count_documents.side_effect = OperationFailure("count not allowed", code=13)

        with self.assertLogs("collection_readers.extract.base_reader", level="WARNING"):
            reader.open()

        self.assertTrue(reader.progress().is_indeterminate)
        self.assertEqual(len(list(reader)), 2)
        self.assertEqual(reader.progress().as_tuple(), (2, None))

    def test_total_capped_by_max_items(self):
        reader = self.make_reader(projected(5), max_items=3)
        self.collection.count_documents.return_value = 40
        reader.open()
        self.assertEqual(reader.progress().total, 3)

    def test_legacy_server_fallback(self):
        """Servers without aggregation cursors get the inline result, with a warning."""
        reader = self.make_reader([])
        self.collection.aggregate.side_effect = OperationFailure(
            "unrecognized field 'cursor'", code=9, details={"errmsg": "unrecognized field 'cursor'"}
        )
        self.collection.database.command.return_value = {"result": projected(3), "ok": 1.0}

        with self.assertLogs("collection_readers.extract.mongo_reader", level="WARNING") as logs:
            reader.open()

        self.assertTrue(reader.used_fallback)
        self.assertEqual(len(logs.records), 1)
        self.assertEqual([r.id for r in reader], ["d1", "d2", "d3"])

        args, kwargs = self.collection.database.command.call_args
        self.assertEqual(args, ("aggregate", "articles"))
        self.assertEqual(kwargs["pipeline"][-1], {"$sort": {"id": 1}})

        reader.close()
        self.client.close.assert_called_once()


class TestErrorsAndClose(MongoReaderTestCase):

    def test_unreachable_server(self):
        reader = self.make_reader(projected(1))
        self.client.admin.command.side_effect = ServerSelectionTimeoutError("no servers")

        with self.assertRaises(ReaderConnectionError) as ctx:
            reader.open()

        self.assertIsInstance(ctx.exception, ConnectionError)
        self.collection.aggregate.assert_not_called()

    def test_rejected_credentials(self):
        reader = self.make_reader(projected(1))
        self.client.admin.command.side_effect = OperationFailure("Authentication failed.", code=18)

        with self.assertRaises(ReaderConnectionError):
            reader.open()
        self.client.close.assert_called_once()

    def test_refused_ping_is_connection_error(self):
        """Any server refusal of the ping check closes the client and surfaces as ReaderConnectionError."""
        reader = self.make_reader(projected(1))
        self.client.admin.command.side_effect = OperationFailure("not authorized on admin", code=13)

        with self.assertRaises(ReaderConnectionError) as ctx:
            reader.open()

        self.assertIsInstance(ctx.exception.__cause__, OperationFailure)
        self.client.close.assert_called_once()
        self.collection.aggregate.assert_not_called()

    def test_malformed_query_fails_before_connecting(self):
        reader = self.make_reader(projected(1), query="{status: ")

        with self.assertRaises(QueryError):
            reader.open()
        self.client.admin.command.assert_not_called()

    def test_rejected_pipeline_releases_connection(self):
        reader = self.make_reader(projected(1))
        self.collection.aggregate.side_effect = OperationFailure("unknown operator: $bogus", code=2)

        with self.assertRaises(QueryError):
            reader.open()
        self.client.close.assert_called_once()
        self.assertFalse(reader.has_next())

    def test_close_is_idempotent(self):
        reader = self.make_reader(projected(3))
        reader.open()
        reader.get_next()

        reader.close()
        reader.close()

        self.assertTrue(self.cursor.closed)
        self.client.close.assert_called_once()
        self.assertFalse(reader.has_next())
        with self.assertRaises(CursorExhaustedError):
            reader.get_next()

    def test_close_before_open(self):
        reader = self.make_reader(projected(1))
        reader.close()
        self.client.close.assert_not_called()

    def test_reader_is_single_use(self):
        reader = self.make_reader(projected(1))
        reader.open()
        with self.assertRaises(RuntimeError):
            reader.open()

if __name__ == '__main__':
    unittest.main()
