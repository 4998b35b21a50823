import argparse
import os
import sys
from datetime import datetime

from rich.console import Console
from rich.table import Table

ROOT_PATH = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_PATH not in sys.path:
    sys.path.insert(0, ROOT_PATH)

from src.cache.ttl_cache_store import TtlCacheStore
from src.utils.gateway_config import GatewayConfig


def _format_time(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def create_stats_table(store: TtlCacheStore, limit: int) -> Table:
    """Summarize the store and list its oldest entries."""
    stats = store.stats()
    table = Table(
        title=f"{store.directory}  ({stats.entries} entries, {stats.size} bytes)",
        show_header=True,
        header_style="bold green",
        border_style="green",
        expand=True,
    )
    table.add_column("KEY", style="white", overflow="fold")
    table.add_column("SIZE", style="white", justify="right", width=10)
    table.add_column("CREATED", style="dim", width=20)
    table.add_column("EXPIRES", style="dim", width=20)

    now = datetime.now().timestamp()
    for entry in store.entries()[:limit]:
        expires_style = "red" if entry.is_expired(now) else "dim"
        table.add_row(
            entry.key,
            str(entry.size_bytes),
            _format_time(entry.created_at),
            f"[{expires_style}]{_format_time(entry.expires_at)}[/{expires_style}]",
        )
    return table


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect and maintain the gateway response cache.")
    parser.add_argument("--cache-dir", help="Cache directory (defaults to CACHE_DIR).")
    subparsers = parser.add_subparsers(dest="command", required=True)

    stats_parser = subparsers.add_parser("stats", help="Show size and the oldest entries.")
    stats_parser.add_argument("--limit", type=int, default=20)
    subparsers.add_parser("clear", help="Remove every entry.")
    subparsers.add_parser("cleanup", help="Delete expired entries.")
    invalidate_parser = subparsers.add_parser("invalidate", help="Remove a single key.")
    invalidate_parser.add_argument("key")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = GatewayConfig.from_env()
    console = Console()

    with TtlCacheStore(
        args.cache_dir or config.cache_dir,
        max_size_bytes=config.cache_max_size_bytes,
        default_ttl_seconds=config.cache_default_ttl_seconds,
    ) as store:
        if args.command == "stats":
            console.print(create_stats_table(store, args.limit))
        elif args.command == "clear":
            store.clear()
            console.print("[green]Cache cleared[/green]")
        elif args.command == "cleanup":
            removed = store.cleanup()
            console.print(f"[green]Removed {removed} expired entries[/green]")
        elif args.command == "invalidate":
            store.invalidate(args.key)
            console.print(f"[green]Invalidated {args.key}[/green]")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
