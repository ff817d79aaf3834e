#!/usr/bin/env python3
"""
Ручной разбор DLQ очереди регистраций.

Повторной обработки автоматически нет: оператор смотрит записи и
возвращает их в основную очередь командой replay.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


def _args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Registration queue DLQ admin")
    p.add_argument("--redis-url", default=None, help="Override REDIS_URL")
    p.add_argument("--queue", default=None, help="Override QUEUE_NAME")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("stats", help="Queue and DLQ depth")

    p_list = sub.add_parser("list", help="Show DLQ records from the head")
    p_list.add_argument("--limit", type=int, default=20)

    p_replay = sub.add_parser("replay", help="Move DLQ records back to the main queue")
    p_replay.add_argument("--count", type=int, default=1)

    p_purge = sub.add_parser("purge", help="Delete all DLQ records")
    p_purge.add_argument("--yes", action="store_true", help="Confirm purge")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    from registration_pipeline.common.config import get_settings
    from registration_pipeline.common.logging import setup_logging
    from registration_pipeline.queue.store import QueueStore

    args = _args(argv)
    settings = get_settings()
    setup_logging(settings)
    store = QueueStore(
        redis_url=args.redis_url or settings.redis_url,
        queue_name=args.queue or settings.queue_name,
    )
    try:
        if args.cmd == "stats":
            out = {
                "queue": store.queue_name,
                "depth": store.queue_depth(),
                "dlq": store.failed_queue_name,
                "dlq_depth": store.failed_depth(),
            }
        elif args.cmd == "list":
            out = {"items": store.list_failed(args.limit)}
        elif args.cmd == "replay":
            replayed, skipped = store.replay_failed(args.count)
            out = {"replayed": replayed, "skipped": skipped}
        else:
            if not args.yes:
                print("purge_not_confirmed: pass --yes")
                return 2
            out = {"purged": store.purge_failed()}
    finally:
        store.close_connection()

    print(json.dumps(out, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
