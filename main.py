"""
CLI entry point for tiercache.

Usage:
    python main.py get --key user:42
    python main.py put --key user:42 --value "hello" [--policy write_back]
    python main.py remove --key user:42
    python main.py stats
    python main.py demo [--policy write_back] [--capacity 3]
"""

import argparse
import json
import logging
import sys

from tiercache import CacheManager, TierCacheException
from tiercache.backends import InMemoryBackend
from tiercache.config import get_settings

_JSON_FORMAT = '{"ts": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "msg": "%(message)s"}'
_TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def _configure_logging(settings):
    fmt = _JSON_FORMAT if settings.logging.format == "json" else _TEXT_FORMAT
    logging.basicConfig(level=settings.logging.level.upper(), format=fmt)


def _build_manager(args):
    settings = get_settings()
    if getattr(args, "policy", None):
        settings.manager.write_policy = args.policy
    return CacheManager.from_settings(settings)


def cmd_get(args):
    """Look a key up through the tier chain."""
    with _build_manager(args) as cache:
        result = cache.get(args.key)
    print(json.dumps({
        "key": args.key,
        "found": result.found,
        "hit_tier": result.hit_tier.value,
        "version": result.version,
        "value": result.value.decode("utf-8", errors="replace") if result.value is not None else None,
    }, indent=2))


def cmd_put(args):
    """Store a value under the configured write policy."""
    with _build_manager(args) as cache:
        entry = cache.put(args.key, args.value.encode("utf-8"))
        cache.flush(timeout=args.flush_timeout)
    if entry is None:
        print(f"{args.key}: newer version already stored, write discarded")
        return
    print(f"{args.key}: stored version {entry.version} ({cache.write_policy.policy_type.value})")


def cmd_remove(args):
    """Remove a key from every tier."""
    with _build_manager(args) as cache:
        existed = cache.remove(args.key)
    print(f"{args.key}: {'removed' if existed else 'not present'}")


def cmd_stats(args):
    """Show per-tier counters of a fresh manager (mostly useful after demo)."""
    with _build_manager(args) as cache:
        tier_stats = {tier.value: s.model_dump(mode="json") for tier, s in cache.tier_stats().items()}
    print(json.dumps(tier_stats, indent=2))


def cmd_demo(args):
    """Walk through read-through promotion and eviction on in-memory backends."""
    cache = CacheManager.configure(
        InMemoryBackend("l2"),
        InMemoryBackend("l3"),
        write_policy=args.policy,
        eviction_policy=args.eviction,
        l1_capacity=args.capacity,
    )
    with cache:
        for i in range(args.capacity + 2):
            cache.put(f"demo:{i}", f"value-{i}".encode("utf-8"))
        cache.flush(timeout=5.0)

        print(f"Wrote {args.capacity + 2} keys with capacity {args.capacity} ({args.policy}, {args.eviction})\n")
        for i in range(args.capacity + 2):
            result = cache.get(f"demo:{i}")
            print(f"  demo:{i:<3} found={result.found!s:<5} hit_tier={result.hit_tier.value}")

        print("\n--- Metrics ---")
        print(json.dumps(cache.stats().model_dump(mode="json"), indent=2))


def main():
    parser = argparse.ArgumentParser(
        description="tiercache - multi-tier cache"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    policies = ["write_through", "write_back", "write_around"]

    p_get = subparsers.add_parser("get", help="Look up a key")
    p_get.add_argument("--key", required=True)

    p_put = subparsers.add_parser("put", help="Store a value")
    p_put.add_argument("--key", required=True)
    p_put.add_argument("--value", required=True)
    p_put.add_argument("--policy", choices=policies, default=None, help="Override configured write policy")
    p_put.add_argument("--flush-timeout", type=float, default=10.0, dest="flush_timeout")

    p_remove = subparsers.add_parser("remove", help="Remove a key from all tiers")
    p_remove.add_argument("--key", required=True)

    subparsers.add_parser("stats", help="Show tier counters")

    p_demo = subparsers.add_parser("demo", help="Run an in-memory walkthrough")
    p_demo.add_argument("--policy", choices=policies, default="write_through")
    p_demo.add_argument("--eviction", choices=["lru", "fifo"], default="lru")
    p_demo.add_argument("--capacity", type=int, default=3)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    _configure_logging(get_settings())

    commands = {
        "get": cmd_get,
        "put": cmd_put,
        "remove": cmd_remove,
        "stats": cmd_stats,
        "demo": cmd_demo,
    }
    try:
        commands[args.command](args)
    except TierCacheException as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
