import sqlite3
import tempfile
import unittest
from unittest.mock import patch

from src.cache.ttl_cache_store import ACCOUNTING_KEY, CacheWriteError, TtlCacheStore


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestTtlCacheStore(unittest.TestCase):
    def setUp(self):
        self._temp_dir = tempfile.TemporaryDirectory()
        self.directory = self._temp_dir.name
        self.clock = FakeClock()
        self.store = self._open(max_size_bytes=10_000)

    def tearDown(self):
        self.store.close()
        self._temp_dir.cleanup()

    def _open(self, max_size_bytes: int) -> TtlCacheStore:
        return TtlCacheStore(
            self.directory,
            max_size_bytes=max_size_bytes,
            default_ttl_seconds=60,
            clock=self.clock,
        )

    def _reopen(self, max_size_bytes: int) -> None:
        self.store.close()
        self.store = self._open(max_size_bytes)

    def test_get_returns_value_until_ttl_elapses(self):
        self.store.set("search_papers:query:\"graphs\"", '{"data": []}', ttl_seconds=1)

        self.assertEqual(self.store.get("search_papers:query:\"graphs\""), '{"data": []}')

        self.clock.advance(1.5)
        self.assertIsNone(self.store.get("search_papers:query:\"graphs\""))

        stats = self.store.stats()
        self.assertEqual(stats.hits, 1)
        self.assertEqual(stats.misses, 1)

    def test_entry_is_absent_exactly_at_expiry(self):
        self.store.set("k", "v", ttl_seconds=10)
        self.clock.advance(10)
        self.assertIsNone(self.store.get("k"))

    def test_missing_key_is_a_miss(self):
        self.assertIsNone(self.store.get("absent"))
        self.assertEqual(self.store.stats().misses, 1)

    def test_overwrite_leaves_single_entry(self):
        self.store.set("k", "first")
        self.clock.advance(1)
        self.store.set("k", "second value")

        self.assertEqual(self.store.get("k"), "second value")
        stats = self.store.stats()
        self.assertEqual(stats.entries, 1)
        self.assertEqual(stats.size, len("second value"))

    def test_size_counts_utf8_bytes(self):
        self.store.set("k", "é")
        self.store.set("b", b"\x00\x01\x02")
        self.assertEqual(self.store.stats().size, 5)
        self.assertEqual(self.store.get("b"), b"\x00\x01\x02")

    def test_eviction_removes_oldest_entries_first(self):
        self._reopen(max_size_bytes=100)
        for key in ("a", "b", "c", "d"):
            self.store.set(key, "x" * 30)
            self.clock.advance(1)

        stats = self.store.stats()
        self.assertLessEqual(stats.size, 100)
        self.assertEqual(stats.entries, 3)
        self.assertIsNone(self.store.get("a"))

        entries = self.store.entries()
        self.assertEqual([entry.key for entry in entries], ["b", "c", "d"])
        created = [entry.created_at for entry in entries]
        self.assertEqual(created, sorted(created))

    def test_overwrite_refreshes_eviction_position(self):
        self._reopen(max_size_bytes=100)
        for key in ("a", "b", "c"):
            self.store.set(key, "x" * 30)
            self.clock.advance(1)
        self.store.set("a", "y" * 30)
        self.clock.advance(1)
        self.store.set("d", "x" * 30)

        self.assertEqual(self.store.get("a"), "y" * 30)
        self.assertIsNone(self.store.get("b"))
        self.assertLessEqual(self.store.stats().size, 100)

    def test_oversized_entry_does_not_stay_over_budget(self):
        self._reopen(max_size_bytes=10)
        self.store.set("small", "12345")
        self.store.set("huge", "x" * 50)

        self.assertLessEqual(self.store.stats().size, 10)

    def test_new_entry_is_kept_when_it_fits_the_budget(self):
        self._reopen(max_size_bytes=100)
        self.store.set("old", "x" * 10)
        self.clock.advance(1)
        self.store.set("large", "y" * 97)

        self.assertEqual(self.store.get("large"), "y" * 97)
        self.assertIsNone(self.store.get("old"))
        self.assertEqual(self.store.stats().size, 97)

    def test_clear_from_another_instance_is_seen_by_writers(self):
        self._reopen(max_size_bytes=100)
        for n in range(9):
            self.store.set(f"k{n}", "x" * 10)
            self.clock.advance(1)

        with self._open(max_size_bytes=100) as operator:
            operator.clear()

        self.store.set("fresh", "y" * 10)
        self.store.set("fresh2", "z" * 10)

        self.assertEqual(self.store.get("fresh"), "y" * 10)
        self.assertEqual(self.store.get("fresh2"), "z" * 10)
        stats = self.store.stats()
        self.assertEqual((stats.size, stats.entries), (20, 2))

    def test_instances_sharing_a_directory_share_the_budget(self):
        self._reopen(max_size_bytes=100)
        for n in range(5):
            self.store.set(f"k{n}", "x" * 20)
            self.clock.advance(1)

        with self._open(max_size_bytes=100) as other:
            self.assertEqual(other.stats().size, 100)
            other.set("late", "y" * 20)
            other.invalidate("k4")

        self.assertIsNone(self.store.get("k0"))
        self.assertIsNone(self.store.get("k4"))
        self.assertEqual(self.store.get("late"), "y" * 20)
        stats = self.store.stats()
        self.assertEqual((stats.size, stats.entries), (60, 3))
        self.assertEqual(
            sum(entry.size_bytes for entry in self.store.entries()), stats.size
        )

    def test_unreadable_rows_never_fail_a_write(self):
        self.store._cache.set("legacy", {"unexpected": True})
        self.store._cache.set("raw", "not an entry")

        self.assertIsNone(self.store.get("legacy"))
        self.assertTrue(self.store.set("k", "value"))

        self.assertEqual(self.store.get("k"), "value")
        self.assertNotIn("legacy", list(self.store._cache))
        self.assertNotIn("raw", list(self.store._cache))
        stats = self.store.stats()
        self.assertEqual((stats.size, stats.entries), (5, 1))

    def test_reserved_key_is_rejected(self):
        with self.assertRaises(ValueError):
            self.store.put(ACCOUNTING_KEY, "v")
        self.assertIsNone(self.store.get(ACCOUNTING_KEY))

    def test_entries_survive_reopen(self):
        self.store.set("paper", '{"title": "X"}')
        self.store.set("author", '{"name": "Y"}')

        self._reopen(max_size_bytes=10_000)

        self.assertEqual(self.store.get("paper"), '{"title": "X"}')
        stats = self.store.stats()
        self.assertEqual(stats.entries, 2)
        self.assertEqual(stats.size, len('{"title": "X"}') + len('{"name": "Y"}'))

    def test_invalidate(self):
        self.store.set("keep", "1")
        self.store.set("drop", "22")

        self.store.invalidate("drop")
        self.store.invalidate("never-stored")

        self.assertIsNone(self.store.get("drop"))
        self.assertEqual(self.store.get("keep"), "1")
        self.assertEqual(self.store.stats().size, 1)

    def test_clear(self):
        self.store.set("a", "1")
        self.store.set("b", "2")

        self.store.clear()

        stats = self.store.stats()
        self.assertEqual((stats.size, stats.entries), (0, 0))
        self.assertIsNone(self.store.get("a"))

    def test_cleanup_removes_only_expired_entries(self):
        self.store.set("short", "1", ttl_seconds=5)
        self.store.set("long", "2", ttl_seconds=500)
        self.clock.advance(10)

        self.assertEqual(self.store.cleanup(), 1)
        self.assertEqual([entry.key for entry in self.store.entries()], ["long"])
        self.assertEqual(self.store.cleanup(), 0)

    def test_write_sweeps_expired_entries(self):
        self.store.set("stale", "1", ttl_seconds=1)
        self.clock.advance(2)
        self.store.set("fresh", "2")

        self.assertEqual(self.store.stats().entries, 1)
        self.assertEqual([entry.key for entry in self.store.entries()], ["fresh"])

    def test_set_failure_is_reported_not_raised(self):
        self.store.set("existing", "1")
        with patch.object(
            self.store._cache, "set", side_effect=sqlite3.OperationalError("disk I/O error")
        ):
            self.assertFalse(self.store.set("k", "value"))
            with self.assertRaises(CacheWriteError) as ctx:
                self.store.put("k", "value")

        self.assertEqual(ctx.exception.key, "k")
        stats = self.store.stats()
        self.assertEqual((stats.size, stats.entries), (1, 1))
        self.assertEqual(self.store.get("existing"), "1")

    def test_put_rejects_unserialized_values_and_bad_ttl(self):
        with self.assertRaises(TypeError):
            self.store.put("k", {"not": "serialized"})
        with self.assertRaises(ValueError):
            self.store.put("k", "v", ttl_seconds=0)

    def test_store_works_as_context_manager(self):
        self.store.close()
        with TtlCacheStore(
            self.directory, max_size_bytes=100, default_ttl_seconds=60, clock=self.clock
        ) as store:
            store.set("k", "v")
            self.assertEqual(store.get("k"), "v")
        self.store = self._open(max_size_bytes=100)


if __name__ == "__main__":
    unittest.main()
