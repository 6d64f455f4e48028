import unittest
from datetime import datetime, timedelta, timezone

from travel_timeline.document_store import (
    DocumentNotFoundError,
    DocumentStore,
    UploadRejectedError,
)
from travel_timeline.upload_validation import RejectReason, UploadLimits

MB = 1024 * 1024
NOW = datetime(2026, 3, 14, 8, 30, 15)
DEFAULT_SLOT = datetime(2026, 3, 14, 10, 0)


def _limits():
    return UploadLimits(
        allowed_types=frozenset({"application/pdf", "image/jpeg", "text/plain"}),
        max_size_bytes=25 * MB,
    )


class TestDocumentStoreAdd(unittest.TestCase):
    def setUp(self):
        self.store = DocumentStore(_limits(), clock=lambda: NOW)

    def tearDown(self):
        self.store.clear()

    def test_add_applies_defaults(self):
        document_id = self.store.add("boarding-pass.pdf", "application/pdf", b"x" * (2 * MB))

        record = self.store.get(document_id)
        self.assertEqual(record.display_name, "boarding-pass.pdf")
        self.assertEqual(record.scheduled_at, DEFAULT_SLOT)
        self.assertEqual(record.created_at, NOW)
        self.assertEqual(record.size, 2 * MB)
        self.assertTrue(document_id.startswith("doc_"))

    def test_add_generates_unique_ids(self):
        ids = {self.store.add(f"file-{index}.pdf", "application/pdf", b"%PDF") for index in range(20)}

        self.assertEqual(len(ids), 20)
        self.assertEqual(len(self.store), 20)

    def test_rejected_upload_creates_no_record(self):
        with self.assertRaises(UploadRejectedError) as ctx:
            self.store.add("huge.pdf", "application/pdf", b"x" * (25 * MB + 1))

        self.assertEqual(ctx.exception.result.reason, RejectReason.SIZE_EXCEEDED)
        self.assertEqual(self.store.list(), [])

    def test_unsupported_type_is_rejected(self):
        with self.assertRaises(UploadRejectedError) as ctx:
            self.store.add("anim.gif", "image/gif", b"GIF89a")

        self.assertEqual(ctx.exception.result.reason, RejectReason.UNSUPPORTED_TYPE)
        self.assertEqual(len(self.store), 0)

    def test_equal_timestamps_keep_insertion_order(self):
        first = self.store.add("a.pdf", "application/pdf", b"a")
        second = self.store.add("b.pdf", "application/pdf", b"b")
        third = self.store.add("c.pdf", "application/pdf", b"c")

        self.assertEqual([record.id for record in self.store.list()], [first, second, third])

    def test_list_stays_sorted_after_every_add(self):
        clock_values = iter(
            [
                datetime(2026, 3, 16, 9, 0),
                datetime(2026, 3, 12, 9, 0),
                datetime(2026, 3, 14, 9, 0),
                datetime(2026, 3, 12, 23, 0),
            ]
        )
        store = DocumentStore(_limits(), clock=lambda: next(clock_values))
        for index in range(4):
            store.add(f"doc-{index}.txt", "text/plain", b"content")
            scheduled = [record.scheduled_at for record in store.list()]
            self.assertEqual(scheduled, sorted(scheduled))

        self.assertEqual(
            [record.filename for record in store.list()],
            ["doc-1.txt", "doc-3.txt", "doc-2.txt", "doc-0.txt"],
        )


class TestDocumentStoreUpdate(unittest.TestCase):
    def setUp(self):
        self.store = DocumentStore(_limits(), clock=lambda: NOW)
        self.a = self.store.add("a.pdf", "application/pdf", b"a")
        self.b = self.store.add("b.pdf", "application/pdf", b"b")
        self.c = self.store.add("c.pdf", "application/pdf", b"c")
        self.store.update(self.a, scheduled_at=DEFAULT_SLOT - timedelta(days=1))
        self.store.update(self.c, scheduled_at=DEFAULT_SLOT + timedelta(days=1))

    def _order(self):
        return [record.id for record in self.store.list()]

    def test_initial_order(self):
        self.assertEqual(self._order(), [self.a, self.b, self.c])

    def test_moving_before_all_neighbors(self):
        self.store.update(self.c, scheduled_at=DEFAULT_SLOT - timedelta(days=5))

        self.assertEqual(self._order(), [self.c, self.a, self.b])

    def test_moving_after_all_neighbors(self):
        self.store.update(self.a, scheduled_at=DEFAULT_SLOT + timedelta(days=5))

        self.assertEqual(self._order(), [self.b, self.c, self.a])

    def test_moving_to_equal_timestamp_keeps_previous_relative_order(self):
        self.store.update(self.c, scheduled_at=DEFAULT_SLOT)

        self.assertEqual(self._order(), [self.a, self.b, self.c])

    def test_update_display_name_only_keeps_position(self):
        record = self.store.update(self.b, display_name="Hotel Booking in Paris")

        self.assertEqual(record.display_name, "Hotel Booking in Paris")
        self.assertEqual(self._order(), [self.a, self.b, self.c])

    def test_reapplying_same_fields_is_idempotent(self):
        target = DEFAULT_SLOT + timedelta(hours=3)
        first = self.store.update(self.b, display_name="Train to Rome", scheduled_at=target)
        order_after_first = self._order()

        second = self.store.update(self.b, display_name="Train to Rome", scheduled_at=target)

        self.assertEqual(first, second)
        self.assertEqual(self._order(), order_after_first)

    def test_update_unknown_id_raises_not_found(self):
        with self.assertRaises(DocumentNotFoundError):
            self.store.update("doc_missing", display_name="x")

    def test_unknown_id_wins_over_blank_display_name(self):
        with self.assertRaises(DocumentNotFoundError):
            self.store.update("doc_missing", display_name="   ")

    def test_blank_display_name_is_rejected(self):
        with self.assertRaises(ValueError):
            self.store.update(self.a, display_name="   ")

        self.assertEqual(self.store.get(self.a).display_name, "a.pdf")

    def test_aware_timestamps_are_stored_as_local_naive(self):
        aware = datetime(2026, 3, 20, 12, 0, tzinfo=timezone.utc)

        record = self.store.update(self.a, scheduled_at=aware)

        self.assertIsNone(record.scheduled_at.tzinfo)
        self.assertEqual(record.scheduled_at, aware.astimezone().replace(tzinfo=None))
        self.assertEqual(self._order()[-1], self.a)


class TestDocumentStoreRemove(unittest.TestCase):
    def setUp(self):
        self.store = DocumentStore(_limits(), clock=lambda: NOW)

    def test_remove_deletes_exactly_one_record(self):
        keep = self.store.add("keep.pdf", "application/pdf", b"k")
        drop = self.store.add("drop.pdf", "application/pdf", b"d")

        self.store.remove(drop)

        self.assertEqual([record.id for record in self.store.list()], [keep])

    def test_second_remove_raises_not_found_without_side_effects(self):
        keep = self.store.add("keep.pdf", "application/pdf", b"k")
        drop = self.store.add("drop.pdf", "application/pdf", b"d")
        self.store.remove(drop)

        with self.assertRaises(DocumentNotFoundError) as ctx:
            self.store.remove(drop)

        self.assertEqual(ctx.exception.document_id, drop)
        self.assertEqual([record.id for record in self.store.list()], [keep])

    def test_remove_releases_preview_file(self):
        document_id = self.store.add("scan.jpg", "image/jpeg", b"\xff\xd8\xffdata")
        preview_path = self.store.open_preview(document_id)
        self.assertTrue(preview_path.exists())
        self.assertEqual(preview_path.read_bytes(), b"\xff\xd8\xffdata")
        self.assertEqual(preview_path.suffix, ".jpg")

        self.store.remove(document_id)

        self.assertFalse(preview_path.exists())

    def test_open_preview_reuses_file(self):
        document_id = self.store.add("ticket.pdf", "application/pdf", b"%PDF-1.4")

        first = self.store.open_preview(document_id)
        second = self.store.open_preview(document_id)

        self.assertEqual(first, second)
        self.store.clear()
        self.assertFalse(first.exists())

    def test_open_preview_unknown_id_raises_not_found(self):
        with self.assertRaises(DocumentNotFoundError):
            self.store.open_preview("doc_missing")

    def test_list_returns_snapshot(self):
        self.store.add("a.pdf", "application/pdf", b"a")
        snapshot = self.store.list()
        snapshot.clear()

        self.assertEqual(len(self.store.list()), 1)


if __name__ == "__main__":
    unittest.main()
