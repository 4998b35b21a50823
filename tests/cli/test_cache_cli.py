import tempfile
import time

from cli.main import main
from src.cache.ttl_cache_store import TtlCacheStore


def _seed(directory: str) -> None:
    with TtlCacheStore(directory, max_size_bytes=10_000, default_ttl_seconds=60) as store:
        store.set("paper", '{"title": "X"}')
        store.set("old", "[]", ttl_seconds=0.001)


def _open(directory: str) -> TtlCacheStore:
    return TtlCacheStore(directory, max_size_bytes=10_000, default_ttl_seconds=60)


def test_stats_lists_entries(capsys):
    with tempfile.TemporaryDirectory() as temp_dir:
        _seed(temp_dir)

        assert main(["--cache-dir", temp_dir, "stats"]) == 0

        output = capsys.readouterr().out
        assert "entries" in output
        assert "paper" in output


def test_cleanup_then_invalidate_then_clear(capsys):
    with tempfile.TemporaryDirectory() as temp_dir:
        _seed(temp_dir)
        time.sleep(0.01)

        assert main(["--cache-dir", temp_dir, "cleanup"]) == 0
        assert "Removed 1 expired entries" in capsys.readouterr().out

        assert main(["--cache-dir", temp_dir, "invalidate", "paper"]) == 0
        with _open(temp_dir) as store:
            assert store.stats().entries == 0
            store.set("k", "v")

        assert main(["--cache-dir", temp_dir, "clear"]) == 0
        with _open(temp_dir) as store:
            assert store.stats().entries == 0
